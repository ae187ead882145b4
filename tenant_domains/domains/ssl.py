"""
Certificate renewal hand-off to certbot.

Issuance itself belongs to certbot; this module only asks it to renew
and reports whether that request was scheduled.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("tenant_domains.domains.ssl")


class CertificateAutomation:
    """Schedules `certbot renew` runs in the background."""

    def __init__(
        self,
        certbot_bin: str = "certbot",
        timeout: int = 600,
        dry_run: bool = False,
    ):
        self.certbot_bin = certbot_bin
        self.timeout = timeout
        self.dry_run = dry_run
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[tuple] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def renew(self) -> tuple[bool, str]:
        """
        Run `certbot renew` once.

        Returns (success, message).
        """
        cmd = [
            self.certbot_bin,
            "renew",
            "--non-interactive",
            "--quiet",
        ]
        if self.dry_run:
            cmd.append("--dry-run")

        logger.info("Running certificate renewal")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                logger.error("Certbot renew timed out")
                return False, f"Certbot timed out after {self.timeout}s"

            if process.returncode == 0:
                logger.info("Certificate renewal finished")
                return True, "Certificates renewed"

            error_msg = stderr.decode().strip() or stdout.decode().strip()
            logger.error(f"Certbot renew failed: {error_msg}")
            return False, f"Certbot failed: {error_msg}"

        except FileNotFoundError:
            logger.error(f"Certbot binary not found: {self.certbot_bin}")
            return False, f"Certbot not found at {self.certbot_bin}"

    async def _renew_in_background(self) -> None:
        self.last_result = await self.renew()

    def schedule_renewal(self) -> dict:
        """Fire-and-forget a renewal run; a run already in flight is reused."""
        scheduled_at = datetime.now(timezone.utc).isoformat()
        if self.running:
            return {
                "scheduled": True,
                "already_running": True,
                "scheduled_at": scheduled_at,
            }

        self._task = asyncio.create_task(self._renew_in_background())
        return {
            "scheduled": True,
            "already_running": False,
            "scheduled_at": scheduled_at,
        }

    async def close(self) -> None:
        if self.running:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
