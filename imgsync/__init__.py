"""imgsync -- copy container images between a local runtime and registries."""

try:
    from importlib.metadata import version as _pkg_version
    VERSION = _pkg_version("imgsync")
except Exception:
    VERSION = "dev"
