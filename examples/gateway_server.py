import os

from mrwsi import run_server

if __name__ == "__main__":
    # Reads mapreduce-wsi-config.xml (or $MRWSI_CONFIG) and serves until Ctrl+C.
    run_server(
        config_path=os.environ.get("MRWSI_CONFIG"),
        port=int(os.environ.get("MRWSI_PORT", "8080")),
        log_level=os.environ.get("MRWSI_LOG_LEVEL", "INFO"),
    )
