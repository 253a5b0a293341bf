from __future__ import annotations

import logging

from selenium import webdriver
from selenium.webdriver import ChromeOptions, FirefoxOptions

from oxtest.config.schema import BrowserConfig

log = logging.getLogger(__name__)


class BrowserSession:
    """Creates browser instances using Selenium Manager."""

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self.config = config or BrowserConfig()
        self.driver = None

    def start(self, browser_name: str | None = None):
        normalized = (browser_name or self.config.name).lower()
        width, height = self.config.window_size.split(",")
        if normalized == "chrome":
            options = ChromeOptions()
            if self.config.headless:
                options.add_argument("--headless=new")
            options.add_argument(f"--window-size={width},{height}")
            driver = webdriver.Chrome(options=options)
        elif normalized == "firefox":
            options = FirefoxOptions()
            if self.config.headless:
                options.add_argument("-headless")
            driver = webdriver.Firefox(options=options)
            driver.set_window_size(int(width), int(height))
        else:
            raise ValueError(f"Unsupported browser: {browser_name}")
        driver.set_page_load_timeout(self.config.page_load_timeout_seconds)
        driver.implicitly_wait(0)
        log.info("Started %s session (headless=%s)", normalized, self.config.headless)
        self.driver = driver
        return driver

    def stop(self) -> None:
        if self.driver is not None:
            self.driver.quit()
            self.driver = None

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()
