"""
Reverse-proxy (nginx) virtual host provisioning for tenant domains.
"""

import asyncio
import logging
import os
import re
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

from ..errors import ConfigValidationError, RemoteProvisioningError

logger = logging.getLogger("tenant_domains.domains.proxy")

# First line of every rendered vhost: "# Tenant <id>: <hostname>"
_OWNER_RE = re.compile(r"^# Tenant (\S+): ")


class ReverseProxyProvisioner:
    """
    Renders, enables and reloads per-hostname nginx virtual hosts.

    The enabled set is shared by every tenant on this process, so every
    mutating sequence runs under one lock.
    """

    def __init__(
        self,
        template_path: str,
        sites_available: str = "/etc/nginx/sites-available",
        sites_enabled: str = "/etc/nginx/sites-enabled",
        backend_port: int = 3333,
        ssl_certificate: str = "/etc/nginx/ssl/origin.pem",
        ssl_certificate_key: str = "/etc/nginx/ssl/origin.key",
        nginx_bin: str = "nginx",
        command_timeout: float = 30.0,
    ):
        self.template_path = Path(template_path)
        self.sites_available = Path(sites_available)
        self.sites_enabled = Path(sites_enabled)
        self.backend_port = backend_port
        self.ssl_certificate = ssl_certificate
        self.ssl_certificate_key = ssl_certificate_key
        self.nginx_bin = nginx_bin
        self.command_timeout = command_timeout
        self._lock = asyncio.Lock()

    @staticmethod
    def _config_name(hostname: str) -> str:
        return f"{hostname.lower().rstrip('.')}.conf"

    def available_path(self, hostname: str) -> Path:
        return self.sites_available / self._config_name(hostname)

    def enabled_path(self, hostname: str) -> Path:
        return self.sites_enabled / self._config_name(hostname)

    async def _run(self, *args: str) -> Tuple[int, str]:
        """Run an nginx command, returning (returncode, combined output)."""
        cmd = [self.nginx_bin, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RemoteProvisioningError(f"nginx not found at {self.nginx_bin}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise RemoteProvisioningError(
                f"{' '.join(cmd)} timed out after {self.command_timeout}s"
            ) from e

        output = (stderr.decode().strip() + "\n" + stdout.decode().strip()).strip()
        return process.returncode, output

    # ── File operations ──────────────────────────────────────────────

    def render(self, tenant_id: str, hostname: str) -> Path:
        """Fill the template and stage it in sites-available."""
        hostname = hostname.lower().rstrip(".")
        try:
            template = self.template_path.read_text()
        except OSError as e:
            raise RemoteProvisioningError(
                f"Cannot read proxy template {self.template_path}: {e}"
            ) from e

        config = (
            template.replace("{{DOMAIN_NAME}}", hostname)
            .replace("{{TENANT_ID}}", str(tenant_id))
            .replace("{{BACKEND_PORT}}", str(self.backend_port))
            .replace("{{SSL_CERTIFICATE}}", self.ssl_certificate)
            .replace("{{SSL_CERTIFICATE_KEY}}", self.ssl_certificate_key)
        )

        target = self.available_path(hostname)
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            self.sites_available.mkdir(parents=True, exist_ok=True)
            tmp.write_text(config)
            os.replace(tmp, target)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise RemoteProvisioningError(f"Cannot stage proxy config for {hostname}: {e}") from e

        logger.info(f"Rendered proxy config: {target}")
        return target

    def enable(self, hostname: str) -> Path:
        """Link the staged config into the serving set in one rename."""
        source = self.available_path(hostname)
        link = self.enabled_path(hostname)

        if not source.exists():
            raise RemoteProvisioningError(f"No staged proxy config for {hostname}")
        if link.is_symlink() and Path(os.readlink(link)) == source:
            logger.info(f"Proxy config already enabled: {hostname}")
            return link

        tmp = link.with_name(f".{link.name}.{uuid.uuid4().hex}.tmp")
        try:
            self.sites_enabled.mkdir(parents=True, exist_ok=True)
            os.symlink(source, tmp)
            os.replace(tmp, link)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise RemoteProvisioningError(f"Cannot enable proxy config for {hostname}: {e}") from e

        logger.info(f"Enabled proxy config: {link}")
        return link

    def disable(self, hostname: str) -> bool:
        """Unlink from the serving set. A missing link counts as disabled."""
        try:
            self.enabled_path(hostname).unlink()
        except FileNotFoundError:
            logger.info(f"Proxy config for {hostname} already disabled")
            return False
        except OSError as e:
            raise RemoteProvisioningError(f"Cannot disable proxy config for {hostname}: {e}") from e
        logger.info(f"Disabled proxy config for {hostname}")
        return True

    def remove(self, hostname: str) -> bool:
        """Disable and delete the staged config."""
        disabled = self.disable(hostname)
        try:
            self.available_path(hostname).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise RemoteProvisioningError(f"Cannot delete proxy config for {hostname}: {e}") from e
        return disabled

    # ── nginx process control ────────────────────────────────────────

    async def validate(self) -> bool:
        """Syntax-check the entire serving set."""
        returncode, output = await self._run("-t")
        if returncode != 0:
            logger.error(f"nginx config check failed: {output}")
            raise ConfigValidationError(
                "Reverse proxy configuration is invalid",
                details={"output": output},
            )
        return True

    async def reload(self) -> bool:
        """Validate, then signal nginx to reload. Never reloads an invalid set."""
        await self.validate()
        returncode, output = await self._run("-s", "reload")
        if returncode != 0:
            raise RemoteProvisioningError(
                "Reverse proxy reload failed",
                details={"output": output},
            )
        logger.info("nginx reloaded")
        return True

    # ── Guarded sequences ────────────────────────────────────────────

    async def activate(self, tenant_id: str, hostname: str) -> dict:
        """
        render -> enable -> validate -> reload as one serialised step.

        A failure unlinks what this call added, so the next caller never
        validates against a broken set.
        """
        hostname = hostname.lower().rstrip(".")
        async with self._lock:
            was_enabled = self.is_enabled(hostname)
            try:
                config_path = self.render(tenant_id, hostname)
                link = self.enable(hostname)
                await self.reload()
            except RemoteProvisioningError:
                if not was_enabled:
                    self._discard(hostname)
                raise

        return {
            "hostname": hostname,
            "active": True,
            "config_path": str(config_path),
            "enabled_path": str(link),
        }

    def _discard(self, hostname: str) -> None:
        try:
            self.remove(hostname)
        except RemoteProvisioningError as e:
            logger.error(f"Could not discard proxy config for {hostname}: {e}")

    async def deactivate(self, hostname: str) -> dict:
        """Remove a vhost from the serving set and reload if anything changed."""
        hostname = hostname.lower().rstrip(".")
        async with self._lock:
            was_enabled = self.remove(hostname)
            if was_enabled:
                await self.reload()
        return {"hostname": hostname, "active": False, "was_enabled": was_enabled}

    # ── Probes ───────────────────────────────────────────────────────

    def is_enabled(self, hostname: str) -> bool:
        return self.enabled_path(hostname).exists()

    def staged_owner(self, hostname: str) -> Optional[str]:
        """Tenant id recorded in the staged config, or None when absent or foreign."""
        try:
            with self.available_path(hostname).open() as f:
                first_line = f.readline()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RemoteProvisioningError(f"Cannot read proxy config for {hostname}: {e}") from e
        match = _OWNER_RE.match(first_line)
        return match.group(1) if match else None

    def list_enabled(self) -> List[str]:
        if not self.sites_enabled.is_dir():
            return []
        return sorted(
            p.name[: -len(".conf")]
            for p in self.sites_enabled.iterdir()
            if p.name.endswith(".conf") and not p.name.startswith(".")
        )

    def get_status(self, hostname: str) -> dict:
        hostname = hostname.lower().rstrip(".")
        return {
            "hostname": hostname,
            "active": self.is_enabled(hostname),
            "nginx_config": self.available_path(hostname).exists(),
        }
