"""Kubernetes API client connection."""

import logging
from pathlib import Path
from typing import Optional

from kubernetes import config
from kubernetes.client import ApiClient, CoreV1Api, StorageV1Api

logger = logging.getLogger(__name__)


class ClusterConnection:
    """Connection to the cluster the controller runs against."""

    def __init__(self, kubeconfig_path: Optional[str] = None, context: Optional[str] = None):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_path: Path to a kubeconfig file; in-cluster config is used if unset
            context: Kubeconfig context to use

        Raises:
            ValueError: If no usable configuration is found
        """
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._storage_v1: Optional[StorageV1Api] = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize Kubernetes API clients."""
        try:
            if self.kubeconfig_path:
                config.load_kube_config(
                    config_file=str(Path(self.kubeconfig_path).expanduser()),
                    context=self.context,
                )
                logger.info(f"Loaded kubeconfig from {self.kubeconfig_path}")
            else:
                config.load_incluster_config()
                logger.info("Loaded in-cluster configuration")

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._storage_v1 = StorageV1Api(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def storage_v1(self) -> StorageV1Api:
        """Get StorageV1Api instance."""
        if not self._storage_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._storage_v1

    def close(self):
        """Close the connection."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
        self._core_v1 = None
        self._storage_v1 = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
