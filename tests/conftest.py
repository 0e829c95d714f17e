"""Shared fixtures: a fake backend, isolated settings and a context on top."""
import pytest

from fakes import FakeBackend, FakeDevice
from rawusb import conf
from rawusb.context import Context


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep tests independent of the user's config file and environment."""
    for name in (conf.ENV_READ_TIMEOUT, conf.ENV_WRITE_TIMEOUT,
                 conf.ENV_AUTO_DETACH, conf.ENV_STRICT_ENDPOINTS):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(conf, 'CONFIG_DIR', str(tmp_path))
    monkeypatch.setattr(conf, 'CONFIG_PATH', str(tmp_path / 'config.json'))


@pytest.fixture
def settings():
    return conf.Settings(config={})


@pytest.fixture
def device():
    return FakeDevice(0x1209, 0x0001, port=3)


@pytest.fixture
def backend(device):
    return FakeBackend([device])


@pytest.fixture
def ctx(backend, settings):
    context = Context(backend, settings)
    yield context
    if not context.closed:
        context.close()
