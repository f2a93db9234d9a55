import pytest

from farmapay.auth.passwords import verify_password
from farmapay.auth.profiles import InMemoryProfileStore
from farmapay.auth.provisioning import (
    DEFAULT_NAME,
    PasswordPolicy,
    Provisioner,
    SeedAccount,
    authenticate,
    check_secret,
    load_seed_file,
    seed,
)
from farmapay.auth.roles import Role
from farmapay.errors import ConflictError, InvalidArgumentError, WeakInputError

from test_profiles import RacingStore


def test_attendant_seed_scenario(provisioner, store):
    args = ("atendente@farmapay.com", "Farma@2025!", "Atendente Padrão", "ATTENDANT")
    first = provisioner.provision(*args)
    second = provisioner.provision(*args)

    profiles = store.list_profiles()
    assert len(profiles) == 1
    assert second.id == first.id
    assert profiles[0].role is Role.ATTENDANT
    assert verify_password(profiles[0].password_hash, "Farma@2025!")
    assert not verify_password(profiles[0].password_hash, "wrong-pass")


def test_reprovision_updates_name_role_and_secret(provisioner, store):
    a = provisioner.provision("ana@farmapay.com", "first", "Ana", Role.SALES)
    b = provisioner.provision("ana@farmapay.com", "second", "Ana M.", Role.MANAGER)

    assert b.id == a.id
    assert (b.name, b.role) == ("Ana M.", Role.MANAGER)
    assert verify_password(b.password_hash, "second")
    assert not verify_password(b.password_hash, "first")
    assert store.find_by_email("ana@farmapay.com") == b


def test_defaults_are_admin_and_generic_name(provisioner):
    p = provisioner.provision("root@farmapay.com", "pw")
    assert p.role is Role.ADMIN
    assert p.name == DEFAULT_NAME


def test_returned_profile_has_no_plaintext(provisioner):
    p = provisioner.provision("ana@farmapay.com", "Farma@2025!")
    assert "Farma@2025!" not in repr(p)


@pytest.mark.parametrize(
    "email,secret,role,field",
    [
        ("not-an-email", "pw", "ADMIN", "email"),
        ("", "pw", "ADMIN", "email"),
        ("ana@", "pw", "ADMIN", "email"),
        ("ana@farmapay.com", "pw", "admin", "role"),
        ("ana@farmapay.com", "pw", "SUPERUSER", "role"),
        ("ana@farmapay.com", "", "ADMIN", "secret"),
    ],
)
def test_invalid_input_writes_nothing(provisioner, store, email, secret, role, field):
    with pytest.raises(InvalidArgumentError) as ei:
        provisioner.provision(email, secret, "Ana", role)
    assert ei.value.field == field
    assert store.list_profiles() == []


def test_empty_secret_is_weak_input(provisioner):
    with pytest.raises(WeakInputError):
        provisioner.provision("ana@farmapay.com", "")


def test_strong_policy(store):
    strict = Provisioner(store, cost_factor=1, password_policy=PasswordPolicy.STRONG)
    with pytest.raises(WeakInputError):
        strict.provision("ana@farmapay.com", "nocaps1!x")
    with pytest.raises(WeakInputError):
        strict.provision("ana@farmapay.com", "Abc123!xyz")
    assert strict.provision("ana@farmapay.com", "Farma@2025!").role is Role.ADMIN


@pytest.mark.parametrize("secret", ["Farma@2025!", "Zz9#abcd"])
def test_check_secret_strong_accepts(secret):
    check_secret(secret, PasswordPolicy.STRONG)


def test_policy_from_env(monkeypatch, store):
    monkeypatch.setenv("FARMAPAY_PASSWORD_POLICY", "strong")
    assert Provisioner(store).password_policy is PasswordPolicy.STRONG
    monkeypatch.setenv("FARMAPAY_PASSWORD_POLICY", "bogus")
    with pytest.raises(RuntimeError):
        Provisioner(store)


def test_single_conflict_is_retried(users_path, fields_for):
    racing = RacingStore(users_path, fields_for(), races=1)
    p = Provisioner(racing, cost_factor=1, password_policy=PasswordPolicy.BASIC).provision(
        "ana@farmapay.com", "pw", "Ana", "SALES"
    )
    assert racing.find_by_email("ana@farmapay.com") == p
    assert len(racing.list_profiles()) == 2


def test_second_conflict_surfaces(users_path, fields_for):
    racing = RacingStore(users_path, fields_for(), races=2)
    with pytest.raises(ConflictError):
        Provisioner(racing, cost_factor=1, password_policy=PasswordPolicy.BASIC).provision(
            "ana@farmapay.com", "pw"
        )
    assert racing.find_by_email("ana@farmapay.com") is None


def test_authenticate(provisioner, store):
    provisioner.provision("ana@farmapay.com", "Farma@2025!", "Ana", "SALES")
    assert authenticate(store, "ANA@farmapay.com", "Farma@2025!").role is Role.SALES
    assert authenticate(store, "ana@farmapay.com", "wrong-pass") is None
    assert authenticate(store, "nobody@farmapay.com", "Farma@2025!") is None
    assert authenticate(store, "ana@farmapay.com", "") is None


def test_seed_file(tmp_path, monkeypatch, provisioner, store):
    path = tmp_path / "seed.yml"
    path.write_text(
        "accounts:\n"
        "  - email: atendente@farmapay.com\n"
        "    password_env: SEED_PW\n"
        "    name: Atendente Padrão\n"
        "    role: ATTENDANT\n"
        "  - email: root@farmapay.com\n"
        "    password: Root@2025!\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SEED_PW", "Farma@2025!")
    accounts = load_seed_file(path)
    assert accounts[1] == SeedAccount("root@farmapay.com", "Root@2025!", DEFAULT_NAME, "ADMIN")

    seed(provisioner, accounts)
    seed(provisioner, accounts)
    assert [(p.email, p.role) for p in store.list_profiles()] == [
        ("atendente@farmapay.com", Role.ATTENDANT),
        ("root@farmapay.com", Role.ADMIN),
    ]


def test_seed_file_missing_env(tmp_path, monkeypatch):
    path = tmp_path / "seed.yml"
    path.write_text("accounts:\n  - email: a@farmapay.com\n    password_env: NOPE_PW\n", encoding="utf-8")
    monkeypatch.delenv("NOPE_PW", raising=False)
    with pytest.raises(InvalidArgumentError):
        load_seed_file(path)


def test_provisioning_different_emails_is_independent():
    store = InMemoryProfileStore()
    prov = Provisioner(store, cost_factor=1, password_policy=PasswordPolicy.BASIC)
    a = prov.provision("a@farmapay.com", "pw", role="MANAGER")
    b = prov.provision("b@farmapay.com", "pw", role="INVESTOR")
    assert a.id != b.id
    assert store.find_by_email("a@farmapay.com").role is Role.MANAGER


def test_legacy_entry_without_id_can_hold_a_session(users_path):
    import yaml

    from farmapay.auth.profiles import YamlProfileStore
    from farmapay.auth.session import SessionGuard, SessionState

    users_path.parent.mkdir(parents=True)
    users_path.write_text(
        yaml.safe_dump({"profiles": {"ana@farmapay.com": {"name": "Ana", "role": "SALES"}}}),
        encoding="utf-8",
    )
    s = YamlProfileStore(users_path)
    p = Provisioner(s, cost_factor=1, password_policy=PasswordPolicy.BASIC).provision(
        "ana@farmapay.com", "pw", "Ana", "SALES"
    )

    assert p.id
    guard = SessionGuard(s)
    assert guard.evaluate(guard.issue(authenticate(s, "ana@farmapay.com", "pw"))).state is SessionState.VALID
