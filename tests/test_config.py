import pytest

from mrwsi.config import DEFAULT_STREAMING_JAR, env_name, load_config
from mrwsi.errors import ConfigError

CONFIG_XML = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE properties SYSTEM "http://java.sun.com/dtd/properties.dtd">
<properties>
  <comment>test</comment>
  <entry key="remoteHost">sandbox</entry>
  <entry key="remoteUser">root</entry>
  <entry key="remotePassword">hadoop</entry>
  <entry key="remoteBaseHDFSFolder">/user/root/wsi/</entry>
  <entry key="remoteBaseLocalFolder">/tmp/wsi</entry>
</properties>
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "mapreduce-wsi-config.xml"
    path.write_text(CONFIG_XML)
    return str(path)


def test_load_config(config_file):
    config = load_config(config_file, environ={})
    assert config.remote_host == "sandbox"
    assert config.remote_user == "root"
    assert config.remote_password == "hadoop"
    assert config.remote_port == 22
    assert config.remote_identity_file is None
    assert config.remote_base_hdfs_folder == "/user/root/wsi"
    assert config.remote_base_local_folder == "/tmp/wsi"
    assert config.hadoop_streaming_jar == DEFAULT_STREAMING_JAR


def test_environment_overrides(config_file):
    config = load_config(config_file, environ={
        "MRWSI_REMOTE_HOST": "other",
        "MRWSI_REMOTE_PORT": "2222",
        "MRWSI_HADOOP_STREAMING_JAR": "/opt/streaming.jar",
    })
    assert config.remote_host == "other"
    assert config.remote_port == 2222
    assert config.hadoop_streaming_jar == "/opt/streaming.jar"


def test_config_path_from_environment(config_file):
    config = load_config(environ={"MRWSI_CONFIG": config_file})
    assert config.remote_host == "sandbox"


@pytest.mark.parametrize("key,expected", [
    ("remoteHost", "MRWSI_REMOTE_HOST"),
    ("remoteBaseHDFSFolder", "MRWSI_REMOTE_BASE_HDFS_FOLDER"),
    ("hadoopStreamingJar", "MRWSI_HADOOP_STREAMING_JAR"),
])
def test_env_name(key, expected):
    assert env_name(key) == expected


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "nope.xml"), environ={})


def test_malformed_file(tmp_path):
    path = tmp_path / "bad.xml"
    path.write_text("<properties><entry key='a'>")
    with pytest.raises(ConfigError, match="parse"):
        load_config(str(path), environ={})


def test_missing_required_key(tmp_path):
    path = tmp_path / "partial.xml"
    path.write_text('<properties><entry key="remoteHost">h</entry></properties>')
    with pytest.raises(ConfigError, match="remoteUser"):
        load_config(str(path), environ={})


def test_bad_port(config_file):
    with pytest.raises(ConfigError, match="remotePort"):
        load_config(config_file, environ={"MRWSI_REMOTE_PORT": "ssh"})
