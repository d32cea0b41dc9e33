"""
Driver Factory - WebDriver creation for cleaning sessions.

Provides a single place to build the Chrome WebDriver a CleanerSession
drives, with the stability flags every session uses.
"""

from typing import Optional
from selenium import webdriver
from selenium.webdriver.chrome.options import Options as ChromeOptions

# Type alias for driver - can be extended to support other browsers
WebDriverType = webdriver.Chrome


def create_driver(
    headless: bool = False,
    profile_path: Optional[str] = None,
    window_size: str = "1280,800",
) -> WebDriverType:
    """
    Create a Chrome WebDriver instance.

    Args:
        headless: Run browser in headless mode
        profile_path: Path to browser profile for session persistence
        window_size: Initial window size as "width,height"

    Returns:
        WebDriver instance

    Example:
        >>> driver = create_driver(headless=True)
        >>> driver.get("https://example.com")
    """
    options = ChromeOptions()

    if headless:
        options.add_argument("--headless=new")

    if profile_path:
        options.add_argument(f"--user-data-dir={profile_path}")

    # Common stability options
    options.add_argument(f"--window-size={window_size}")
    options.add_argument("--disable-extensions")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_experimental_option("excludeSwitches", ["enable-automation"])

    return webdriver.Chrome(options=options)

