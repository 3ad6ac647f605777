"""Tests for the flags HTTP API."""

FLAGS = "/api/v1/projects/shop/environments/production/flags"


def create(client, **payload):
    response = client.post(FLAGS, json=payload, headers={"X-Actor": "alice"})
    assert response.status_code == 201, response.text
    return response.json()


class TestServiceEndpoints:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_service_info(self, client):
        data = client.get("/api/v1/flags").json()
        assert data["service"] == "Flagship Feature Flags API"
        assert data["status"] == "operational"

    def test_metrics_exposed(self, client):
        client.get("/healthz")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "api_requests_total" in response.text

    def test_cors_header(self, client):
        response = client.post(
            "/api/v1/flags",
            json={"project": "shop", "environment": "production"},
            headers={"Origin": "https://example.com"},
        )
        assert response.headers["access-control-allow-origin"] == "*"


class TestFlagCrud:
    def test_create_and_get(self, client, fake_redis, premium_targeting):
        created = create(client, key="new-checkout", type="multivariate", enabled=True,
                         value="classic", targeting=premium_targeting)
        assert created["version"] == 1
        assert created["targeting"]["rules"][0]["rolloutPercentage"] == 100
        assert created["targeting"]["defaultRule"] == {"rolloutPercentage": 0, "value": False}
        assert ("flag_updates", "shop:production:new-checkout") in fake_redis.published

        fetched = client.get(f"{FLAGS}/new-checkout").json()
        assert fetched["value"] == "classic"
        assert fetched["type"] == "multivariate"

    def test_create_duplicate_conflicts(self, client):
        create(client, key="dup")
        response = client.post(FLAGS, json={"key": "dup"})
        assert response.status_code == 409

    def test_same_key_in_other_environment(self, client):
        create(client, key="dup")
        response = client.post("/api/v1/projects/shop/environments/staging/flags", json={"key": "dup"})
        assert response.status_code == 201

    def test_create_rejects_unknown_operator(self, client, premium_targeting):
        premium_targeting["rules"][0]["conditions"][0]["operator"] = "regex"
        response = client.post(FLAGS, json={"key": "bad", "targeting": premium_targeting})
        assert response.status_code == 422

    def test_create_rejects_out_of_range_rollout(self, client, premium_targeting):
        premium_targeting["rules"][0]["rolloutPercentage"] = 101
        response = client.post(FLAGS, json={"key": "bad", "targeting": premium_targeting})
        assert response.status_code == 422

    def test_fractional_rollout_is_kept(self, client, premium_targeting):
        premium_targeting["defaultRule"]["rolloutPercentage"] = 12.5
        created = create(client, key="fraction", targeting=premium_targeting)
        assert created["targeting"]["defaultRule"]["rolloutPercentage"] == 12.5

    def test_list(self, client):
        create(client, key="b-flag")
        create(client, key="a-flag")
        keys = [f["key"] for f in client.get(FLAGS).json()]
        assert keys == ["a-flag", "b-flag"]

    def test_get_missing(self, client):
        assert client.get(f"{FLAGS}/nope").status_code == 404

    def test_update_merges_and_bumps_version(self, client, premium_targeting):
        create(client, key="new-checkout", enabled=True, value=True, targeting=premium_targeting)
        response = client.put(f"{FLAGS}/new-checkout", json={"enabled": False})
        assert response.status_code == 200
        updated = response.json()
        assert updated["enabled"] is False
        assert updated["version"] == 2
        assert updated["value"] is True
        assert updated["targeting"]["rules"][0]["id"] == "premium-users"

    def test_update_clears_targeting(self, client, premium_targeting):
        create(client, key="new-checkout", targeting=premium_targeting)
        updated = client.put(f"{FLAGS}/new-checkout", json={"targeting": None}).json()
        assert updated["targeting"] is None

    def test_update_refreshes_cache(self, client, fake_redis):
        create(client, key="new-checkout", enabled=False)
        client.put(f"{FLAGS}/new-checkout", json={"enabled": True})
        assert client.get(f"{FLAGS}/new-checkout").json()["enabled"] is True

    def test_update_missing(self, client):
        assert client.put(f"{FLAGS}/nope", json={"enabled": True}).status_code == 404

    def test_delete(self, client, fake_redis):
        create(client, key="old-flag")
        assert client.delete(f"{FLAGS}/old-flag").status_code == 204
        assert "flag:shop:production:old-flag" not in fake_redis.store
        assert client.get(f"{FLAGS}/old-flag").status_code == 404
        assert client.delete(f"{FLAGS}/old-flag").status_code == 404

    def test_audit_trail(self, client):
        create(client, key="audited")
        client.put(f"{FLAGS}/audited", json={"enabled": True}, headers={"X-Actor": "bob"})
        client.delete(f"{FLAGS}/audited")
        audits = client.get(f"{FLAGS}/audited/audits").json()
        assert sorted((a["action"], a["actor"]) for a in audits) == [
            ("create", "alice"),
            ("delete", "anonymous"),
            ("update", "bob"),
        ]
        created = next(a for a in audits if a["action"] == "create")
        assert created["before_state"] is None
        assert created["after_state"]["key"] == "audited"


class TestEvaluation:
    def test_evaluate_all_flags(self, client, premium_targeting):
        create(client, key="dark-mode", enabled=True, value=True)
        create(client, key="kill-switch", enabled=False, value="off")
        create(client, key="new-checkout", type="multivariate", enabled=True, value="classic",
               targeting=premium_targeting)

        response = client.post("/api/v1/flags", json={
            "project": "shop",
            "environment": "production",
            "user": {"id": "test-user-123", "attributes": {"plan": "premium", "country": "TR"}},
        })
        assert response.status_code == 200
        data = response.json()
        assert data["flags"] == {
            "dark-mode": {"enabled": True, "value": True, "type": "boolean"},
            "kill-switch": {"enabled": False, "value": "off", "type": "boolean"},
            "new-checkout": {"enabled": True, "value": "premium-checkout", "type": "multivariate"},
        }
        assert data["user"]["id"] == "test-user-123"

    def test_non_matching_user_gets_default_rule(self, client, premium_targeting):
        create(client, key="new-checkout", enabled=True, value="classic", targeting=premium_targeting)
        data = client.post("/api/v1/flags", json={
            "project": "shop",
            "environment": "production",
            "user": {"id": "u1", "attributes": {"plan": "free"}},
        }).json()
        assert data["flags"]["new-checkout"] == {"enabled": False, "value": False, "type": "boolean"}

    def test_disabled_targeting_serves_flag_value(self, client, premium_targeting):
        premium_targeting["enabled"] = False
        create(client, key="new-checkout", enabled=True, value="classic", targeting=premium_targeting)
        data = client.post("/api/v1/flags", json={
            "project": "shop",
            "environment": "production",
            "user": {"id": "u1", "attributes": {"plan": "premium"}},
        }).json()
        assert data["flags"]["new-checkout"]["enabled"] is True
        assert data["flags"]["new-checkout"]["value"] == "classic"

    def test_empty_user_context(self, client):
        create(client, key="dark-mode", enabled=True, value=True)
        response = client.post("/api/v1/flags", json={"project": "shop", "environment": "production"})
        assert response.status_code == 200
        assert response.json()["flags"]["dark-mode"]["enabled"] is True

    def test_unknown_project_has_no_flags(self, client):
        data = client.post("/api/v1/flags", json={"project": "other", "environment": "production"}).json()
        assert data["flags"] == {}

    def test_single_flag_with_query_attributes(self, client):
        targeting = {
            "enabled": True,
            "rules": [{
                "id": "heavy-users",
                "conditions": [
                    {"attribute": "orders", "operator": "gt", "value": 25},
                    {"attribute": "country", "operator": "in", "value": ["TR", "US"]},
                ],
                "rolloutPercentage": 100,
                "value": "express",
            }],
            "defaultRule": {"rolloutPercentage": 100, "value": "standard"},
        }
        create(client, key="shipping", type="multivariate", enabled=True, value="standard", targeting=targeting)

        hit = client.get(f"{FLAGS}/shipping/evaluate", params={"user_id": "u1", "orders": "30", "country": "TR"})
        assert hit.status_code == 200
        assert hit.json() == {"key": "shipping", "enabled": True, "value": "express",
                              "type": "multivariate", "version": 1}

        miss = client.get(f"{FLAGS}/shipping/evaluate", params={"user_id": "u1", "orders": "30", "country": "DE"})
        assert miss.json()["value"] == "standard"

    def test_single_flag_missing(self, client):
        assert client.get(f"{FLAGS}/nope/evaluate", params={"user_id": "u1"}).status_code == 404
