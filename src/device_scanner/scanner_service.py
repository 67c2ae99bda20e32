"""
Device Scanner Service - Main orchestration.

Starts the transport scanners onto one shared intake queue. A single
consumer classifies each sighting, merges it into the device cache and
saves when something worth persisting changed. Diagnostics, remote
actions and report export run over cache snapshots.

A small local JSON API exposes on-demand scans and the inventory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Iterable, Optional

from aiohttp import web

from ._types import (
    AutomatedFix,
    DeviceProfile,
    DiagnosisReport,
    DispatchResult,
    FixResult,
    NetworkInsights,
    ScanResult,
    Sighting,
    now_utc,
    service_labels,
)
from .classifier import classify_sighting, is_resolved
from .config import ScannerConfig
from .device_cache import DeviceCache
from .diagnostics import (
    analyze_device,
    execute_fix,
    generate_automated_fix,
    generate_network_insights,
    health_status_for,
)
from .discovery import (
    DiscoveryMethod,
    IPRangeScanner,
    LocalInterfaceScanner,
    RadioPairingScanner,
    WirelessScanner,
)
from .remote import RemoteActionDispatcher, build_cloud_sync_payload
from .reporting import build_report
from .vendor_lookup import VendorLookup

logger = logging.getLogger(__name__)

SCAN_HISTORY_LIMIT = 10


class DeviceScannerService:
    """
    Main device scanner service.

    Owns the device cache and every collaborator that reads or writes it.
    """

    def __init__(
        self,
        config: ScannerConfig,
        cache: Optional[DeviceCache] = None,
        scanners: Optional[Iterable[DiscoveryMethod]] = None,
        vendor_lookup: Optional[VendorLookup] = None,
        dispatcher: Optional[RemoteActionDispatcher] = None,
    ):
        """
        Initialize scanner service.

        Args:
            config: Scanner configuration
            cache: Device cache (defaults to one at config.cache_path)
            scanners: Discovery methods (defaults to those enabled in config)
            vendor_lookup: MAC vendor resolver
            dispatcher: Remote action dispatcher
        """
        self.config = config
        self.cache = cache or DeviceCache(config.cache_path)
        self.vendor_lookup = vendor_lookup or VendorLookup(
            online=config.online_vendor_lookup,
            url=config.vendor_lookup_url,
        )
        self.dispatcher = dispatcher or RemoteActionDispatcher(
            command_delay=config.command_delay_seconds,
        )

        self._scanners: dict[str, DiscoveryMethod] = {}
        if scanners is None:
            self._init_discovery_methods()
        else:
            for scanner in scanners:
                self._scanners[scanner.name] = scanner

        self._intake: asyncio.Queue[Sighting] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

        self._current_scan: Optional[ScanResult] = None
        self._scan_waiter: Optional[asyncio.Task] = None
        self._active_scanners: list[DiscoveryMethod] = []
        self._cancel_requested = False
        self._history: list[ScanResult] = []

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._stop_task: Optional[asyncio.Task] = None

        # API server for on-demand scans
        self._api_app: Optional[web.Application] = None
        self._api_runner: Optional[web.AppRunner] = None

    def _init_discovery_methods(self) -> None:
        """Initialize enabled discovery methods."""
        if self.config.enable_bluetooth:
            self._add_scanner(RadioPairingScanner(scan_seconds=self.config.bluetooth_scan_seconds))

        if self.config.enable_wifi:
            self._add_scanner(WirelessScanner(timeout=self.config.wifi_scan_timeout))

        if self.config.enable_network and self.config.network_ranges:
            self._add_scanner(IPRangeScanner(
                network_ranges=self.config.network_ranges,
                quick_check_timeout=self.config.quick_check_timeout,
                port_scan_timeout=self.config.port_scan_timeout,
                max_concurrent_hosts=self.config.max_concurrent_hosts,
                max_concurrent_scans=self.config.max_concurrent_scans,
                resolve_hosts=self.config.resolve_hosts,
            ))
            logger.info(f"Network discovery enabled for {self.config.network_ranges}")

        if self.config.enable_local:
            self._add_scanner(LocalInterfaceScanner(self.config.serial_paths))

    def _add_scanner(self, scanner: DiscoveryMethod) -> None:
        self._scanners[scanner.name] = scanner
        logger.info(f"{scanner.name} discovery enabled")

    @property
    def scanner_names(self) -> list[str]:
        return list(self._scanners)

    @property
    def is_scanning(self) -> bool:
        return self._scan_waiter is not None and not self._scan_waiter.done()

    @property
    def current_scan(self) -> Optional[ScanResult]:
        return self._current_scan

    @property
    def scan_history(self) -> list[ScanResult]:
        return list(self._history)

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name="sighting-consumer")

    async def start_scan(
        self,
        methods: Optional[Iterable[str]] = None,
        triggered_by: str = "manual",
    ) -> str:
        """
        Start a scan pass on the selected methods and return its id.

        Returns immediately; sightings are processed as they arrive. If a
        scan is already running its id is returned instead.
        """
        if self.is_scanning and self._current_scan is not None:
            logger.warning(f"Scan {self._current_scan.scan_id} already running")
            return self._current_scan.scan_id

        selected = list(methods) if methods is not None else list(self._scanners)
        result = ScanResult(triggered_by=triggered_by)
        self._current_scan = result
        self._cancel_requested = False
        self._active_scanners = []

        logger.info(f"Starting scan (id={result.scan_id}, triggered_by={triggered_by})")
        self._ensure_consumer()

        for name in selected:
            scanner = self._scanners.get(name)
            if scanner is None:
                logger.warning(f"Unknown discovery method: {name}")
                continue
            try:
                if not await scanner.is_available():
                    logger.warning(f"Discovery method {name} not available")
                    continue
            except Exception as e:
                logger.error(f"Error checking {name} availability: {e}")
                continue

            logger.info(f"Running {name} discovery")
            scanner.start_scan(self._intake)
            self._active_scanners.append(scanner)
            result.methods_used.append(name)

        self._scan_waiter = asyncio.create_task(
            self._finish_scan(result, list(self._active_scanners)),
            name=f"scan-{result.scan_id}",
        )
        return result.scan_id

    async def _finish_scan(self, result: ScanResult, scanners: list[DiscoveryMethod]) -> ScanResult:
        """Wait for every scanner, drain the intake, then close out the scan."""
        try:
            counts = await asyncio.gather(*(s.wait() for s in scanners), return_exceptions=True)
            for scanner, count in zip(scanners, counts):
                if isinstance(count, BaseException):
                    logger.error(f"Error in {scanner.name} discovery: {count}")
                else:
                    logger.info(f"{scanner.name} found {count} devices")

            await self._intake.join()
            await self.cache.save()

            result.status = "cancelled" if self._cancel_requested else "completed"

        except Exception as e:
            logger.error(f"Scan failed: {e}")
            result.status = "failed"
            result.error_message = str(e)

        result.completed_at = now_utc()
        self._history.append(result)
        del self._history[:-SCAN_HISTORY_LIMIT]

        logger.info(
            f"Scan {result.status}: {result.sightings} sightings, "
            f"{result.new_devices} new, {result.updated_devices} updated"
        )
        return result

    async def cancel_scan(self) -> bool:
        """Stop every running scanner. Returns False if nothing was running."""
        if not self.is_scanning:
            return False
        self._cancel_requested = True
        for scanner in self._active_scanners:
            scanner.cancel()
        return True

    async def wait_for_scan(self) -> Optional[ScanResult]:
        """Wait for the current scan (if any) to finish."""
        if self._scan_waiter is not None:
            await self._scan_waiter
        return self._current_scan

    async def run_scan(
        self,
        methods: Optional[Iterable[str]] = None,
        triggered_by: str = "manual",
    ) -> ScanResult:
        """Run a full scan pass and return its summary."""
        await self.start_scan(methods, triggered_by=triggered_by)
        return await self.wait_for_scan()

    async def _consume(self) -> None:
        """Single consumer of the intake queue."""
        while True:
            sighting = await self._intake.get()
            try:
                await self._ingest(sighting)
            except Exception as e:
                logger.error(f"Error processing sighting {sighting.identity}: {e}")
            finally:
                self._intake.task_done()

    async def _ingest(self, sighting: Sighting) -> None:
        """Classify one sighting and merge it into the cache."""
        vendor = sighting.vendor or await self.vendor_lookup.lookup(
            sighting.mac_address or sighting.address
        )
        classification = classify_sighting(sighting, vendor)

        attributes = dict(sighting.attributes)
        if sighting.mac_address:
            attributes["mac_address"] = sighting.mac_address

        partial = {
            "name": sighting.name,
            "address": sighting.address,
            "vendor": classification.vendor,
            "ports": sighting.ports,
            "services": service_labels(sighting.ports),
            "active": sighting.active,
            "remote_accessible": sighting.remote_accessible,
            "last_seen": sighting.observed_at,
            "attributes": attributes,
        }
        # An unclassified sighting must not replace a known category
        if is_resolved(classification.category):
            partial["category"] = classification.category
            partial["compatibility"] = classification.compatibility
        merged = await self.cache.merge(sighting.identity, partial)

        scan = self._current_scan
        if scan is not None:
            scan.sightings += 1
            if merged.is_new:
                scan.new_devices += 1
            elif merged.worth_persisting:
                scan.updated_devices += 1

        if merged.is_new:
            logger.info(
                f"New device: {merged.profile.identity} ({merged.profile.address}) "
                f"category={merged.profile.category} vendor={merged.profile.vendor}"
            )

        if merged.worth_persisting:
            await self.cache.save()

    # -------------------------------------------------------------------------
    # Diagnostics and remote actions
    # -------------------------------------------------------------------------

    def _require(self, identity: str) -> DeviceProfile:
        profile = self.cache.get(identity)
        if profile is None:
            raise KeyError(identity)
        return profile

    def devices(self) -> list[DeviceProfile]:
        return self.cache.snapshot()

    def get_device(self, identity: str) -> DeviceProfile:
        """Profile for an identity. Raises KeyError if unknown."""
        return self._require(identity)

    async def analyze(self, identity: str) -> DiagnosisReport:
        """Diagnose a device and record its health status."""
        profile = self._require(identity)
        report = analyze_device(profile)
        status = health_status_for(report, profile)
        if status != profile.health_status:
            await self.cache.set_health(identity, status)
            await self.cache.save()
        return report

    async def insights(self) -> NetworkInsights:
        return generate_network_insights(self.cache.snapshot())

    async def dispatch(self, identity: str) -> DispatchResult:
        return await self.dispatcher.dispatch(self._require(identity))

    async def run_fix(self, identity: str, issue: str) -> tuple[AutomatedFix, FixResult]:
        """Plan and (simulated) execute the remediation for one issue."""
        profile = self._require(identity)
        fix = generate_automated_fix(profile, issue)
        result = await execute_fix(fix, profile, command_delay=self.config.command_delay_seconds)
        return fix, result

    async def report(self) -> dict:
        return build_report(self.cache.snapshot(), await self.insights())

    def cloud_sync_payload(self) -> dict:
        return build_cloud_sync_payload(self.cache.snapshot())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scanner service."""
        logger.info("Starting Device Scanner Service")
        self._running = True

        await self.cache.load()
        self._ensure_consumer()

        # Start API server
        await self._start_api_server()

        # Initial discovery scan
        logger.info("Running initial discovery scan")
        await self.start_scan(triggered_by="startup")

        await self._shutdown_event.wait()
        logger.info("Scanner service loop stopped")

    async def stop(self) -> None:
        """
        Stop the scanner service.

        Safe to call more than once or concurrently (signal handler and
        shutdown path); every caller waits for the same shutdown.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._shutdown(), name="scanner-shutdown")
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        logger.info("Stopping Device Scanner Service")
        self._running = False
        self._shutdown_event.set()

        await self.close()

        # Stop API server
        if self._api_runner:
            await self._api_runner.cleanup()
            self._api_runner = None

    async def close(self) -> None:
        """Cancel running scans, stop the consumer and save the cache."""
        await self.cancel_scan()
        if self._scan_waiter is not None:
            await self._scan_waiter

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        await self.cache.save()

    # -------------------------------------------------------------------------
    # API
    # -------------------------------------------------------------------------

    def create_app(self) -> web.Application:
        """Build the local JSON API."""
        app = web.Application()
        app.router.add_post("/api/scans/trigger", self._handle_trigger_scan)
        app.router.add_post("/api/scans/cancel", self._handle_cancel_scan)
        app.router.add_get("/api/scans/status", self._handle_scan_status)
        app.router.add_get("/api/devices", self._handle_list_devices)
        app.router.add_get("/api/devices/{identity}", self._handle_get_device)
        app.router.add_post("/api/devices/{identity}/diagnose", self._handle_diagnose)
        app.router.add_post("/api/devices/{identity}/dispatch", self._handle_dispatch)
        app.router.add_get("/api/insights", self._handle_insights)
        app.router.add_get("/api/report", self._handle_report)
        app.router.add_get("/api/health", self._handle_health)
        return app

    async def _start_api_server(self) -> None:
        """Start API server for on-demand scans."""
        self._api_app = self.create_app()
        self._api_runner = web.AppRunner(self._api_app)
        await self._api_runner.setup()
        site = web.TCPSite(self._api_runner, self.config.api_host, self.config.api_port)
        await site.start()
        logger.info(f"API server started on {self.config.api_host}:{self.config.api_port}")

    @staticmethod
    def _error(message: str, status: int) -> web.Response:
        return web.json_response({"status": "error", "message": message}, status=status)

    async def _handle_trigger_scan(self, request: web.Request) -> web.Response:
        """Handle POST /api/scans/trigger."""
        try:
            data = await request.json() if request.body_exists else {}
        except ValueError:
            return self._error("Request body must be JSON", 400)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            return self._error("Request body must be a JSON object", 400)

        methods = data.get("methods")
        if methods is not None and (
            not isinstance(methods, list) or not all(isinstance(m, str) for m in methods)
        ):
            return self._error("methods must be a list of method names", 400)

        try:
            scan_id = await self.start_scan(methods, triggered_by="api")

            return web.json_response({
                "status": "started",
                "scan_id": scan_id,
                "methods": self._current_scan.methods_used if self._current_scan else [],
            })

        except Exception as e:
            return self._error(str(e), 500)

    async def _handle_cancel_scan(self, request: web.Request) -> web.Response:
        """Handle POST /api/scans/cancel."""
        cancelled = await self.cancel_scan()
        return web.json_response({"status": "cancelling" if cancelled else "idle"})

    async def _handle_scan_status(self, request: web.Request) -> web.Response:
        """Handle GET /api/scans/status."""
        return web.json_response({
            "scanning": self.is_scanning,
            "current": self._current_scan.to_dict() if self._current_scan else None,
            "history": [s.to_dict() for s in reversed(self._history)],
        })

    async def _handle_list_devices(self, request: web.Request) -> web.Response:
        """Handle GET /api/devices."""
        try:
            category = request.query.get("category")
            limit = int(request.query.get("limit", "100"))
            offset = int(request.query.get("offset", "0"))

            devices = self.cache.snapshot()
            if category:
                devices = [d for d in devices if d.category.lower() == category.lower()]

            return web.json_response({
                "devices": [d.to_dict() for d in devices[offset:offset + limit]],
                "total": len(devices),
            })

        except ValueError as e:
            return self._error(str(e), 400)

    async def _handle_get_device(self, request: web.Request) -> web.Response:
        """Handle GET /api/devices/{identity}."""
        identity = request.match_info["identity"]
        try:
            profile = self.get_device(identity)
        except LookupError:
            return self._error("Device not found", 404)
        return web.json_response({"device": profile.to_dict()})

    async def _handle_diagnose(self, request: web.Request) -> web.Response:
        """Handle POST /api/devices/{identity}/diagnose."""
        identity = request.match_info["identity"]
        try:
            report = await self.analyze(identity)
        except LookupError:
            return self._error("Device not found", 404)
        except Exception as e:
            return self._error(str(e), 500)

        profile = self.cache.get(identity)
        return web.json_response({
            "report": report.to_dict(),
            "health_status": profile.health_status if profile else None,
        })

    async def _handle_dispatch(self, request: web.Request) -> web.Response:
        """Handle POST /api/devices/{identity}/dispatch."""
        identity = request.match_info["identity"]
        try:
            result = await self.dispatch(identity)
        except LookupError:
            return self._error("Device not found", 404)
        except Exception as e:
            return self._error(str(e), 500)

        return web.json_response({
            "protocol": result.protocol,
            "success": result.success,
            "message": result.message,
        })

    async def _handle_insights(self, request: web.Request) -> web.Response:
        """Handle GET /api/insights."""
        insights = await self.insights()
        return web.json_response(insights.to_dict())

    async def _handle_report(self, request: web.Request) -> web.Response:
        """Handle GET /api/report."""
        return web.json_response(await self.report())

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /api/health."""
        last = self._history[-1] if self._history else None
        return web.json_response({
            "status": "ok",
            "service": "device-scanner",
            "devices": len(self.cache),
            "scanning": self.is_scanning,
            "methods": self.scanner_names,
            "last_scan": last.started_at.isoformat() if last else None,
        })


async def _scan_once(service: DeviceScannerService) -> dict:
    await service.cache.load()
    await service.run_scan(triggered_by="cli")
    report = await service.report()
    await service.close()
    return report


def main():
    """Entry point for device-scanner service."""
    import argparse

    parser = argparse.ArgumentParser(description="Universal Device Scanner Service")
    parser.add_argument("--config", type=str, help="Path to config file")
    parser.add_argument("--host", type=str, default=None, help="API host")
    parser.add_argument("--port", type=int, default=None, help="API port")
    parser.add_argument("--log-level", type=str, default=None, help="Log level")
    parser.add_argument("--once", action="store_true", help="Run one scan, print the report and exit")
    args = parser.parse_args()

    # Load configuration
    if args.config:
        config = ScannerConfig.from_yaml(Path(args.config))
    else:
        config = ScannerConfig.from_env()

    # Override with CLI args
    if args.host:
        config.api_host = args.host
    if args.port:
        config.api_port = args.port
    if args.log_level:
        config.log_level = args.log_level

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Validate
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        sys.exit(1)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create service
    service = DeviceScannerService(config)

    if args.once:
        try:
            report = loop.run_until_complete(_scan_once(service))
        finally:
            loop.close()
        print(json.dumps(report, indent=2))
        return

    # Handle signals
    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        loop.run_until_complete(service.stop())
        loop.close()


if __name__ == "__main__":
    main()
