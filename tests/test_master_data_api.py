import uvicorn
from fastapi import status

from warehouse_core.app import main


class TestContacts:

    def test_create_and_filter_by_type(self, client, manager_headers):
        for name, kind in (("Acme", "Vendor"), ("Globex", "Customer"), ("Initech", "Both")):
            response = client.post("/contacts", json={
                "name": name, "phone": "555-0000", "email": f"{name.lower()}@example.com",
                "contact_type": kind,
            }, headers=manager_headers)
            assert response.status_code == status.HTTP_201_CREATED

        vendors = client.get("/contacts", params={"contact_type": "Vendor"}, headers=manager_headers).json()
        assert [c["name"] for c in vendors] == ["Acme", "Initech"]

    def test_invalid_email(self, client, manager_headers):
        response = client.post("/contacts", json={
            "name": "Broken", "phone": "1", "email": "not-an-email",
        }, headers=manager_headers)
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_update(self, client, manager_headers, vendor):
        response = client.patch(f"/contacts/{vendor.id}", json={"city": "Springfield"}, headers=manager_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["city"] == "Springfield"

    def test_referenced_contact_cannot_be_deleted(self, client, manager_headers, vendor):
        client.post("/api/receipts", json={"supplier_id": vendor.id}, headers=manager_headers)
        response = client.delete(f"/contacts/{vendor.id}", headers=manager_headers)
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_staff_can_read_but_not_write(self, client, staff_headers, vendor):
        assert client.get(f"/contacts/{vendor.id}", headers=staff_headers).status_code == 200
        response = client.delete(f"/contacts/{vendor.id}", headers=staff_headers)
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestWarehouses:

    def test_create_with_locations(self, client, manager_headers):
        response = client.post("/warehouses", json={"name": "East Depot", "shortcode": "east"}, headers=manager_headers)
        assert response.status_code == status.HTTP_201_CREATED
        warehouse = response.json()
        assert warehouse["shortcode"] == "EAST"

        response = client.post(
            f"/warehouses/{warehouse['id']}/locations",
            json={"name": "Rack A", "shortcode": "EAST/A"},
            headers=manager_headers,
        )
        assert response.status_code == status.HTTP_201_CREATED

        listed = client.get("/warehouses", headers=manager_headers).json()
        assert listed[0]["locations"][0]["shortcode"] == "EAST/A"

    def test_duplicate_shortcode(self, client, manager_headers, warehouse):
        response = client.post("/warehouses", json={"name": "Other", "shortcode": "WH"}, headers=manager_headers)
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_location_for_unknown_warehouse(self, client, manager_headers):
        response = client.post("/warehouses/99/locations", json={"name": "X", "shortcode": "X"}, headers=manager_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestServerLauncher:

    def test_run_reads_environment(self, monkeypatch):
        calls = {}
        monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.update(app=app, **kwargs))
        monkeypatch.delenv("HOST", raising=False)
        monkeypatch.delenv("RELOAD", raising=False)
        monkeypatch.setenv("PORT", "9000")

        main.run()

        assert calls == {
            "app": "warehouse_core.app.main:app",
            "host": "127.0.0.1",
            "port": 9000,
            "reload": False,
        }
