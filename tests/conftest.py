import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

from pathlib import Path

import pytest

from farmapay.auth.passwords import hash_password
from farmapay.auth.profiles import InMemoryProfileStore, ProfileFields, YamlProfileStore
from farmapay.auth.provisioning import PasswordPolicy, Provisioner
from farmapay.auth.roles import Role

SECRET = "test-secret-key-0123456789abcdef"


@pytest.fixture(autouse=True)
def _secret_key(monkeypatch):
    monkeypatch.setenv("FARMAPAY_SECRET_KEY", SECRET)


@pytest.fixture()
def store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture()
def users_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "users.yml"


@pytest.fixture()
def yaml_store(users_path: Path) -> YamlProfileStore:
    s = YamlProfileStore(users_path)
    s.open()
    yield s
    s.close()


@pytest.fixture()
def provisioner(store) -> Provisioner:
    # Lowest argon2 time cost keeps the suite fast.
    return Provisioner(store, cost_factor=1, password_policy=PasswordPolicy.BASIC)


@pytest.fixture()
def fields_for():
    def _make(secret: str = "s3cret!", name: str = "Someone", role: Role = Role.ATTENDANT) -> ProfileFields:
        return ProfileFields(password_hash=hash_password(secret, 1), name=name, role=role)

    return _make
