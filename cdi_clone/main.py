"""Clone controller process entry point."""

import logging
import signal
from threading import Event, Thread
from typing import Optional

from . import __version__
from .cache import Informer, ObjectCache
from .clone_controller import CloneController
from .cluster import ClusterConnection
from .config import Settings, get_settings
from .expectations import ControllerExpectations
from .token import TokenValidator, load_public_key

logger = logging.getLogger(__name__)


class Application:
    """Wires caches, informers and the clone controller together."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.stop_event = Event()
        self.cluster: Optional[ClusterConnection] = None
        self.informers: list[Informer] = []
        self._threads: list[Thread] = []

    def build(self) -> CloneController:
        """Create the cluster connection, caches, informers and controller."""
        self.cluster = ClusterConnection(self.settings.kubeconfig_path, self.settings.kube_context)
        core_v1 = self.cluster.core_v1
        storage_v1 = self.cluster.storage_v1

        claim_cache = ObjectCache("persistentvolumeclaim")
        pod_cache = ObjectCache("pod")
        storage_class_cache = ObjectCache("storageclass")

        timeout = self.settings.watch_timeout_seconds
        claim_informer = Informer(
            core_v1.list_persistent_volume_claim_for_all_namespaces, claim_cache, timeout
        )
        pod_informer = Informer(core_v1.list_pod_for_all_namespaces, pod_cache, timeout)
        storage_class_informer = Informer(storage_v1.list_storage_class, storage_class_cache, timeout)
        self.informers = [claim_informer, pod_informer, storage_class_informer]

        validator = TokenValidator(
            load_public_key(self.settings.apiserver_public_key_path),
            issuer=self.settings.clone_token_issuer,
            leeway=self.settings.clone_token_leeway_seconds,
        )
        controller = CloneController(
            self.cluster,
            claim_cache,
            pod_cache,
            storage_class_cache,
            image=self.settings.clone_image,
            pull_policy=self.settings.pull_policy,
            verbose=self.settings.verbose,
            token_validator=validator,
            expectations=ControllerExpectations(self.settings.expectations_timeout_seconds),
        )
        controller.register(claim_informer, pod_informer)
        return controller

    def start_informers(self) -> None:
        """Start informers and wait for their caches to fill."""
        for informer in self.informers:
            thread = Thread(
                target=informer.run,
                args=(self.stop_event,),
                name=f"{informer.resource_type}-informer",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        for informer in self.informers:
            if not informer.wait_for_sync(self.settings.cache_sync_timeout_seconds):
                raise RuntimeError(f"Timed out waiting for {informer.resource_type} cache to sync")
            logger.info(f"✓ {informer.resource_type} cache synced")

    def run(self) -> None:
        """Run until a shutdown signal is received."""
        logger.info("🚀 Starting CDI clone controller...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Image: {self.settings.clone_image} ({self.settings.pull_policy})")

        controller = self.build()
        try:
            self.start_informers()
            controller.run(self.settings.threadiness, self.stop_event)
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop informers and close the cluster connection."""
        logger.info("🛑 Shutting down clone controller...")
        self.stop_event.set()
        for informer in self.informers:
            informer.stop()
        for thread in self._threads:
            thread.join(timeout=self.settings.informer_stop_timeout_seconds)
            if thread.is_alive():
                logger.warning(f"{thread.name} did not stop in time")
        self._threads.clear()
        if self.cluster:
            self.cluster.close()
        logger.info("✓ Clone controller stopped")

    def handle_signal(self, sig: int, frame=None) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self.stop_event.set()


def main() -> None:
    """Main entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = Application(settings)
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, app.handle_signal)

    app.run()


if __name__ == "__main__":
    main()
