import logging
import os
import re
import time
from typing import Tuple

from playwright.async_api import Page

logger = logging.getLogger(__name__)


def _slug(label: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-") or "page"


async def save_page_artifacts(page: Page, label: str, output_dir: str) -> Tuple[str, str]:
    """Save a full-page screenshot and the rendered HTML of the current page.

    Args:
        page: Page to capture
        label: Short name used in the file names (e.g., "colruyt page 1")
        output_dir: Directory the files are written to, created if missing

    Returns:
        Paths of the screenshot and the HTML dump
    """
    os.makedirs(output_dir, exist_ok=True)
    stem = f"debug-{_slug(label)}-{int(time.time() * 1000)}"

    screenshot_path = os.path.join(output_dir, f"{stem}.png")
    await page.screenshot(path=screenshot_path, full_page=True)
    logger.info("Screenshot saved: %s", screenshot_path)

    html_path = os.path.join(output_dir, f"{stem}.html")
    with open(html_path, "w", encoding="utf-8") as f:
        f.write(await page.content())
    logger.info("HTML dumped: %s", html_path)

    return screenshot_path, html_path
