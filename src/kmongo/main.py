import kopf
import logging

from kmongo.config import get_settings
from kmongo.crd.generator import CRDManager
from kmongo.services.kube import load_kube_config

logging.basicConfig(
    level=getattr(logging, get_settings().log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@kopf.on.startup()
def startup_fn(settings: kopf.OperatorSettings, **kwargs):
    """Configure the operator and make sure the MongoDB CRD is served."""
    config = get_settings()
    logger.info("kmongo operator is starting up...")

    load_kube_config()

    if config.manage_crds:
        try:
            crd_manager = CRDManager()
            if config.generate_crd_files:
                logger.info("Generating CRD files and applying to cluster")
                crd_manager.generate_all_crds(force=True)
            else:
                logger.info("Applying CRDs in memory-only mode (no YAML files)")

            if crd_manager.apply_crds_to_cluster():
                logger.info("CRDs applied to cluster successfully")
            else:
                logger.warning("No CRDs were applied to cluster")
        except Exception as e:
            logger.error(f"Failed to apply CRDs to cluster: {e}")

    # status is owned by the reconcile core, keep kopf's bookkeeping in annotations
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.batching.worker_limit = config.worker_limit
    settings.posting.enabled = config.posting_enabled
    settings.watching.server_timeout = config.server_timeout

    logger.info(f"Worker limit: {settings.batching.worker_limit}")
    logger.info(f"Posting enabled: {settings.posting.enabled}")
    logger.info("kmongo operator startup complete")


@kopf.on.cleanup()
def cleanup_fn(**kwargs):
    logger.info("kmongo operator shutdown complete")


def main():
    from kmongo import handlers  # noqa: F401  registers the kopf handlers

    try:
        kopf.run(clusterwide=True)
    except KeyboardInterrupt:
        logger.info("Operator stopped by user")
    except Exception as e:
        logger.error(f"Operator failed: {e}")
        raise


if __name__ == "__main__":
    main()
