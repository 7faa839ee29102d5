"""
Configuration loading for the MapReduce gateway.

The configuration is a Java style XML properties file::

    <?xml version="1.0" encoding="UTF-8"?>
    <!DOCTYPE properties SYSTEM "http://java.sun.com/dtd/properties.dtd">
    <properties>
      <entry key="remoteHost">gateway.cluster.local</entry>
      <entry key="remoteUser">hadoop</entry>
      <entry key="remoteBaseHDFSFolder">/user/hadoop/mapreduce_wsi</entry>
      <entry key="remoteBaseLocalFolder">/tmp/mapreduce_wsi</entry>
    </properties>

Every key can be overridden through an ``MRWSI_<KEY>`` environment variable,
where ``<KEY>`` is the property name in upper snake case (``remoteHost`` ->
``MRWSI_REMOTE_HOST``).
"""
import logging
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "mapreduce-wsi-config.xml"
CONFIG_PATH_ENV = "MRWSI_CONFIG"
ENV_PREFIX = "MRWSI_"

DEFAULT_STREAMING_JAR = "/usr/lib/hadoop-mapreduce/hadoop-streaming.jar"

REQUIRED_KEYS = (
    "remoteHost",
    "remoteUser",
    "remoteBaseHDFSFolder",
    "remoteBaseLocalFolder",
)
OPTIONAL_KEYS = (
    "remotePassword",
    "remotePort",
    "remoteIdentityFile",
    "hadoopStreamingJar",
)


@dataclass(frozen=True)
class GatewayConfig:
    remote_host: str
    remote_user: str
    remote_base_hdfs_folder: str
    remote_base_local_folder: str
    remote_password: Optional[str] = None
    remote_port: int = 22
    remote_identity_file: Optional[str] = None
    hadoop_streaming_jar: str = DEFAULT_STREAMING_JAR


def env_name(key: str) -> str:
    """``remoteBaseHDFSFolder`` -> ``MRWSI_REMOTE_BASE_HDFS_FOLDER``."""
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", "_", key)
    return ENV_PREFIX + snake.upper()


def parse_properties(root: ET.Element) -> Dict[str, str]:
    if root.tag != "properties":
        raise ConfigError(f"Expected <properties> root element, got <{root.tag}>")
    properties = {}
    for entry in root.iter("entry"):
        key = entry.attrib.get("key")
        if not key:
            raise ConfigError("Found <entry> without a key attribute")
        properties[key] = (entry.text or "").strip()
    return properties


def load_properties(file_path: str) -> Dict[str, str]:
    """
    Load a Java XML properties file into a plain dict.

    Args:
        file_path: Path to the XML file

    Returns:
        Mapping of property key to (whitespace stripped) value
    """
    try:
        tree = ET.parse(file_path)
    except ET.ParseError as e:
        raise ConfigError(f"Failed to parse config file '{file_path}': {e}") from e
    except FileNotFoundError as e:
        raise ConfigError(f"Config file '{file_path}' not found") from e
    return parse_properties(tree.getroot())


def config_from_properties(
    properties: Mapping[str, str], environ: Optional[Mapping[str, str]] = None
) -> GatewayConfig:
    environ = os.environ if environ is None else environ
    merged = dict(properties)
    for key in REQUIRED_KEYS + OPTIONAL_KEYS:
        override = environ.get(env_name(key))
        if override:
            logger.debug(f"Config key {key} overridden from environment")
            merged[key] = override

    missing = [key for key in REQUIRED_KEYS if not merged.get(key)]
    if missing:
        raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

    port = merged.get("remotePort") or "22"
    try:
        remote_port = int(port)
    except ValueError as e:
        raise ConfigError(f"remotePort must be an integer, got {port!r}") from e

    return GatewayConfig(
        remote_host=merged["remoteHost"],
        remote_user=merged["remoteUser"],
        remote_base_hdfs_folder=merged["remoteBaseHDFSFolder"].rstrip("/"),
        remote_base_local_folder=merged["remoteBaseLocalFolder"].rstrip("/"),
        remote_password=merged.get("remotePassword") or None,
        remote_port=remote_port,
        remote_identity_file=merged.get("remoteIdentityFile") or None,
        hadoop_streaming_jar=merged.get("hadoopStreamingJar") or DEFAULT_STREAMING_JAR,
    )


def load_config(
    file_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> GatewayConfig:
    """
    Load the gateway configuration.

    The file path defaults to ``$MRWSI_CONFIG`` and then to
    ``mapreduce-wsi-config.xml`` in the working directory.
    """
    environ = os.environ if environ is None else environ
    file_path = file_path or environ.get(CONFIG_PATH_ENV) or CONFIG_FILE_NAME
    config = config_from_properties(load_properties(file_path), environ)
    logger.info(f"Loaded mapreduce-wsi configuration from {file_path}")
    return config
