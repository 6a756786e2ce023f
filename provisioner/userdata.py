"""Adjustments to the cloud-init payload before it is seeded on the machine.

Bare-metal nodes join a cluster whose cloud controller runs externally, so
the kubelet has to start with `cloud-provider=external`. The kubeadm
bootstrap provider does not know that, hence the JoinConfiguration embedded
in the cloud-config `write_files` is patched here.
"""

import yaml

from shared.logging import get_logger

from .errors import UserDataError

logger = get_logger(__name__)

KUBEADM_JOIN_CONFIG_PATH = "/tmp/kubeadm-join-config.yaml"  # noqa: S108
CLOUD_CONFIG_MARKER = b"#cloud-config"
CLOUD_PROVIDER_ARG = "cloud-provider"
CLOUD_PROVIDER_EXTERNAL = "external"


class _BlockStyleDumper(yaml.SafeDumper):
    """Dump multi-line strings (embedded files) as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    style = "|" if "\n" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


_BlockStyleDumper.add_representer(str, _represent_str)


def _split_header(payload: bytes) -> tuple[list[bytes], bytes]:
    """Separate leading comment lines (`## template: jinja`, `#cloud-config`)."""
    lines = payload.splitlines(keepends=True)
    header: list[bytes] = []
    for line in lines:
        if not line.startswith(b"#"):
            break
        header.append(line)
    return header, b"".join(lines[len(header) :])


def _set_external_cloud_provider(join_config: dict) -> bool:
    registration = join_config.get("nodeRegistration")
    if registration is None:
        registration = join_config["nodeRegistration"] = {}

    extra_args = registration.get("kubeletExtraArgs")
    if extra_args is None:
        extra_args = registration["kubeletExtraArgs"] = {}

    # kubeadm v1beta4 switched to a list of {name, value}
    if isinstance(extra_args, list):
        if any(arg.get("name") == CLOUD_PROVIDER_ARG for arg in extra_args):
            return False
        extra_args.append({"name": CLOUD_PROVIDER_ARG, "value": CLOUD_PROVIDER_EXTERNAL})
        return True

    if CLOUD_PROVIDER_ARG in extra_args:
        return False
    extra_args[CLOUD_PROVIDER_ARG] = CLOUD_PROVIDER_EXTERNAL
    return True


def ensure_external_cloud_provider(payload: bytes) -> bytes:
    """Return the payload with cloud-provider=external set for kubeadm join.

    Payloads that are not cloud-config (shell scripts, gzip archives, MIME
    multipart) or carry no join configuration (e.g. the first control plane
    node) are returned unchanged, byte for byte.
    """
    header, body = _split_header(payload)
    if not any(line.strip() == CLOUD_CONFIG_MARKER for line in header):
        return payload

    try:
        document = yaml.safe_load(body.decode())
    except UnicodeDecodeError as e:
        raise UserDataError(f"cloud-config user-data is not valid UTF-8: {e}") from e
    except yaml.YAMLError as e:
        raise UserDataError(f"error parsing YAML user-data: {e}") from e
    if not isinstance(document, dict):
        raise UserDataError("user-data is not a cloud-config mapping")

    write_files = document.get("write_files")
    if not isinstance(write_files, list):
        raise UserDataError("write_files not found in cloud-init")

    entry = next(
        (
            item
            for item in write_files
            if isinstance(item, dict) and item.get("path") == KUBEADM_JOIN_CONFIG_PATH
        ),
        None,
    )
    if entry is None:
        return payload

    try:
        join_documents = list(yaml.safe_load_all(entry.get("content") or ""))
    except yaml.YAMLError as e:
        raise UserDataError(f"error parsing kubeadm config: {e}") from e

    changed = False
    for doc in join_documents:
        if isinstance(doc, dict) and doc.get("kind") == "JoinConfiguration":
            changed = _set_external_cloud_provider(doc) or changed
    if not changed:
        return payload

    entry["content"] = yaml.dump_all(
        [doc for doc in join_documents if doc is not None],
        Dumper=_BlockStyleDumper,
        sort_keys=False,
        explicit_start=True,
    )
    logger.debug("userdata_cloud_provider_set", path=KUBEADM_JOIN_CONFIG_PATH)
    rendered = yaml.dump(document, Dumper=_BlockStyleDumper, sort_keys=False)
    return b"".join(header) + rendered.encode()
