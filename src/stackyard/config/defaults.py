"""Default configuration values for Stackyard."""

DEFAULT_CONFIG_FILENAMES: tuple[str, ...] = ("stackyard.yml", "stackyard.yaml")

# Starter configuration written by ``stackyard init-config``
CONFIG_TEMPLATE = """\
# Stackyard control plane configuration
# Values may reference environment variables as ${VAR_NAME}.

manifest_path: stack.yml
stack_name: stackyard

registry:
  url: localhost:5000
  tag: latest

resources:
  cpus: "0.50"
  memory: 256M

routing:
  domain_suffix: localhost
  entrypoint: web
  app_port: 3000
  network: stackyard_overlay

server:
  host: 127.0.0.1
  port: 3030
  cors_origins:
    - http://localhost:4173

event_buffer_size: 256
shutdown_grace_seconds: 30
teardown_timeout_seconds: 20
teardown_on_shutdown: true
"""
