TARGET_PLATFORM = "linux/amd64"
DEFAULT_BASE_IMAGE = "cgr.dev/chainguard/busybox:latest"
BASE_URL_PLACEHOLDER = "BASE_URL"
DIGEST_PREFIX = "sha256:"

DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_REFERENCE_DOMAIN = "registry.local"
DEFAULT_TAGS = ("latest",)

DEFAULT_CONFIG_FILE = ".imagereleaser.yml"
MANIFEST_DIR = ".imagereleaser"
FILE_MODE = 0o644
