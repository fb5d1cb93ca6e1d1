#!/usr/bin/env python3
"""Entry point: configure logging and run the operator in-process."""

import logging
import os
import socket
import sys

import kopf

# Importing the controller registers its handlers with kopf.
from kubevirt_actuator import controller  # noqa: F401


def configure_logging():
    """Configure logging with hostname and pod name for better traceability"""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_format = '%(asctime)s [%(levelname)s] [%(name)s] [%(hostname)s] [%(pod_name)s] %(message)s'

    hostname = socket.gethostname()
    pod_name = os.environ.get("POD_NAME", "unknown")

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format=log_format,
        stream=sys.stdout,
    )

    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.hostname = hostname
        record.pod_name = pod_name
        return record

    logging.setLogRecordFactory(record_factory)

    logging.info(f"Logging configured at {log_level} level")


def main():
    configure_logging()

    # Either a comma-separated namespace list or, when unset, the whole cluster.
    namespaces = [ns for ns in os.environ.get("WATCH_NAMESPACE", "").split(",") if ns]
    if namespaces:
        logging.info(f"KubeVirt machine actuator watching namespaces {namespaces}")
    else:
        logging.info("KubeVirt machine actuator watching Machines across all namespaces")

    leader_id = os.environ.get("POD_NAME", socket.gethostname())
    logging.info(f"Configuring leader election with leader ID: {leader_id}")

    # Peering (leader election) needs the KopfPeering CRDs; standalone mode skips it.
    standalone = os.environ.get("KOPF_STANDALONE", "true").lower() in ("1", "true", "yes")

    kopf.run(
        standalone=standalone,
        clusterwide=not namespaces,
        namespaces=namespaces,
        peering_name=os.environ.get("KOPF_PEERING", "kubevirt-machine-actuator"),
        identity=leader_id,
        priority=0,
    )


if __name__ == "__main__":
    main()
