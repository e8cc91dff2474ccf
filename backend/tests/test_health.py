"""Проверка живости приложения."""


def test_health(client):
    """GET /health возвращает 200 и status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"
