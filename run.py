#!/usr/bin/env python3
"""
NamespaceClass Controller - Entry Point

A CRD-based Kubernetes controller that watches NamespaceClass objects and
keeps the resources they declare in sync inside every namespace labeled
with namespaceclass.akuity.io/name.

Usage:
    python run.py [--dry-run] [--in-cluster] [--workers N] [--resync-interval SECONDS]
"""

import argparse
import logging
import sys

from kubernetes import config

from namespaceclass_controller.config import MAX_CONCURRENT_RECONCILES, RESYNC_INTERVAL_SECONDS
from namespaceclass_controller.controller import NamespaceClassController

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="NamespaceClass Controller - Materialize NamespaceClass resources in labeled namespaces"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run in dry-run mode (no changes made)"
    )
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=MAX_CONCURRENT_RECONCILES,
        help=f"Number of concurrent reconciliations (default: {MAX_CONCURRENT_RECONCILES})"
    )
    parser.add_argument(
        "--resync-interval",
        type=float,
        default=RESYNC_INTERVAL_SECONDS,
        help=f"Seconds between full resyncs (default: {RESYNC_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Load Kubernetes configuration
    try:
        if args.in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster configuration")
        else:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    # Create and run controller
    controller = NamespaceClassController(
        dry_run=args.dry_run,
        workers=args.workers,
        resync_interval=args.resync_interval
    )

    try:
        controller.run()
    except KeyboardInterrupt:
        controller.stop()
        logger.info("Controller stopped")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Controller error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
