import uvicorn

from farmapay.__main__ import main


def test_main_serves_the_app_factory(monkeypatch):
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda target, **kw: calls.append((target, kw)))
    monkeypatch.setenv("FARMAPAY_PORT", "9001")
    monkeypatch.setenv("FARMAPAY_RELOAD", "yes")

    main()

    target, kw = calls[0]
    assert target == "farmapay.app:create_app"
    assert kw["factory"] is True
    assert (kw["port"], kw["reload"]) == (9001, True)
    assert kw["log_config"] is None
