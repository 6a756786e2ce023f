import pytest

from provisioner.bootstrap import (
    BootstrapDataNotReady,
    BootstrapDataProvider,
    FileBootstrapDataProvider,
    StaticBootstrapDataProvider,
)


@pytest.mark.asyncio
async def test_static_provider_ready():
    provider = StaticBootstrapDataProvider(b"#cloud-config\n")
    assert await provider.get_bootstrap_data() == b"#cloud-config\n"


@pytest.mark.asyncio
async def test_static_provider_not_ready():
    with pytest.raises(BootstrapDataNotReady):
        await StaticBootstrapDataProvider().get_bootstrap_data()


@pytest.mark.asyncio
async def test_file_provider(tmp_path):
    path = tmp_path / "user-data"
    path.write_bytes(b"#cloud-config\nruncmd: []\n")

    data = await FileBootstrapDataProvider(path).get_bootstrap_data()
    assert data == b"#cloud-config\nruncmd: []\n"


@pytest.mark.asyncio
async def test_file_provider_missing(tmp_path):
    with pytest.raises(BootstrapDataNotReady, match="does not exist"):
        await FileBootstrapDataProvider(tmp_path / "user-data").get_bootstrap_data()


@pytest.mark.asyncio
async def test_file_provider_empty(tmp_path):
    path = tmp_path / "user-data"
    path.write_bytes(b"\n")

    with pytest.raises(BootstrapDataNotReady, match="is empty"):
        await FileBootstrapDataProvider(path).get_bootstrap_data()


def test_providers_satisfy_protocol(tmp_path):
    assert isinstance(StaticBootstrapDataProvider(), BootstrapDataProvider)
    assert isinstance(FileBootstrapDataProvider(tmp_path / "x"), BootstrapDataProvider)
