"""
Tests for store endpoints and store staff management.
"""
import json

from fastapi import status
from fastapi.testclient import TestClient

from main import app
from models.category import Category
from models.product import Product
from models.store import Store
from models.user import user_store_roles
from services.assets import get_asset_manager
from services.staff import StaffRoleRegistry


def _create_store(client, headers, name="Acme Shop!!", files=None, **fields):
    data = {"name": name, **fields}
    return client.post("/stores", data=data, files=files, headers=headers)


class TestCreateStore:
    def test_create_store(self, client, db, make_user, headers_for):
        owner = make_user()
        response = _create_store(
            client,
            headers_for(owner),
            address=json.dumps({
                "line1": "1 Main St", "city": "Springfield", "state": "IL",
                "country": "US", "postal_code": "12345",
            }),
            contact=json.dumps({"email": "shop@example.com", "phone": "5551234567"}),
            settings=json.dumps({"currency": "EUR", "tax_rate": 0.2}),
        )
        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["message"] == "Store created successfully"
        data = body["data"]
        assert data["slug"] == "acme-shop"
        assert data["owner_id"] == owner.id
        assert data["settings"] == {"currency": "EUR", "tax_rate": 0.2, "shipping_fee": 0.0}
        assert data["address"]["city"] == "Springfield"
        assert data["contact"]["email"] == "shop@example.com"
        # The creator becomes store_admin
        assert owner.store_roles(db) == [(data["id"], "store_admin")]

    def test_default_settings(self, client, make_user, headers_for):
        response = _create_store(client, headers_for(make_user()), name="Plain Shop")
        assert response.json()["data"]["settings"] == {"currency": "USD", "tax_rate": 0.0, "shipping_fee": 0.0}

    def test_requires_authentication(self, client):
        response = _create_store(client, {})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_name_conflict_is_case_insensitive(self, client, make_user, headers_for):
        headers = headers_for(make_user())
        assert _create_store(client, headers, name="Corner Shop").status_code == 201
        response = _create_store(client, headers, name="corner shop")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["message"] == "Store name already exists"

    def test_slug_conflict(self, client, make_user, headers_for):
        headers = headers_for(make_user())
        assert _create_store(client, headers, name="Corner Shop").status_code == 201
        response = _create_store(client, headers, name="Corner -- Shop!")
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_tax_rate_out_of_range(self, client, make_user, headers_for):
        response = _create_store(
            client, headers_for(make_user()), settings=json.dumps({"tax_rate": 1.5})
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_invalid_nested_json(self, client, make_user, headers_for):
        response = _create_store(client, headers_for(make_user()), address="{not json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_logo_and_banner(self, client, blobs, make_user, headers_for, png):
        response = _create_store(
            client,
            headers_for(make_user()),
            files=[
                ("logo", ("logo.png", png, "image/png")),
                ("banner", ("banner.png", png, "image/png")),
            ],
        )
        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()["data"]
        assert "/stores/logos/" in data["logo"]
        assert "/stores/logos/thumbnails/" in data["logo_thumbnail"]
        assert "/stores/banners/" in data["banner"]
        assert len(blobs.objects) == 4

    def test_banner_failure_removes_logo(self, client, blobs, make_user, headers_for, png):
        blobs.fail_put_matching = "stores/banners"
        response = _create_store(
            client,
            headers_for(make_user()),
            files=[
                ("logo", ("logo.png", png, "image/png")),
                ("banner", ("banner.png", png, "image/png")),
            ],
        )
        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert blobs.objects == {}


class TestReadStores:
    def test_list_hides_inactive(self, client, make_store):
        make_store("Open Shop")
        make_store("Closed Shop", is_active=False)
        response = client.get("/stores")
        assert response.status_code == status.HTTP_200_OK
        names = [s["name"] for s in response.json()["data"]["items"]]
        assert names == ["Open Shop"]

    def test_admin_sees_inactive(self, client, make_store, make_user, headers_for):
        make_store("Open Shop")
        make_store("Closed Shop", is_active=False)
        response = client.get("/stores", headers=headers_for(make_user(role="admin")))
        assert response.json()["data"]["total_items"] == 2

    def test_search_and_pagination(self, client, db, make_store):
        for i in range(3):
            store = make_store(f"Book Shop {i}")
            store.address = {"city": "Leeds"}
        make_store("Toy Shop")
        db.commit()

        page = client.get("/stores", params={"search": "book", "limit": 2}).json()["data"]
        assert page["total_items"] == 3
        assert page["total_pages"] == 2
        assert len(page["items"]) == 2

        by_city = client.get("/stores", params={"search": "leeds"}).json()["data"]
        assert by_city["total_items"] == 3

    def test_get_inactive_store_is_not_found(self, client, make_store):
        store = make_store("Closed Shop", is_active=False)
        assert client.get(f"/stores/{store.id}").status_code == status.HTTP_404_NOT_FOUND


class TestUpdateStore:
    def test_rename_updates_slug(self, client, store, admin_headers):
        response = client.put(f"/stores/{store.id}", data={"name": "New Name"}, headers=admin_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["slug"] == "new-name"

    def test_nested_objects_merge(self, client, db, store, admin_headers):
        store.settings = {"currency": "USD", "tax_rate": 0.1, "shipping_fee": 5.0}
        db.commit()
        response = client.put(
            f"/stores/{store.id}",
            data={"settings": json.dumps({"shipping_fee": 0})},
            headers=admin_headers,
        )
        assert response.json()["data"]["settings"] == {"currency": "USD", "tax_rate": 0.1, "shipping_fee": 0.0}

    def test_manager_cannot_update(self, client, store, make_user, grant, headers_for):
        manager = make_user()
        grant(manager, store, "store_manager")
        response = client.put(f"/stores/{store.id}", data={"name": "Mine Now"}, headers=headers_for(manager))
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_reactivate_inactive_store(self, client, db, store, admin_headers):
        store.is_active = False
        db.commit()
        response = client.put(f"/stores/{store.id}", data={"is_active": "true"}, headers=admin_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["is_active"] is True

    def test_logo_replacement_deletes_old_pair(self, client, blobs, store, admin_headers, png):
        first = client.put(
            f"/stores/{store.id}", files={"logo": ("a.png", png, "image/png")}, headers=admin_headers
        ).json()["data"]
        second = client.put(
            f"/stores/{store.id}", files={"logo": ("b.png", png, "image/png")}, headers=admin_headers
        ).json()["data"]
        assert second["logo"] != first["logo"]
        assert blobs.key_for(first["logo"]) not in blobs.objects
        assert blobs.key_for(second["logo"]) in blobs.objects

    def test_rename_conflict(self, client, make_store, store, admin_headers):
        make_store("Taken Name")
        response = client.put(f"/stores/{store.id}", data={"name": "TAKEN NAME"}, headers=admin_headers)
        assert response.status_code == status.HTTP_409_CONFLICT


class TestDeleteStore:
    def test_delete_cascades(self, client, db, store, store_admin, admin_headers, png):
        category = client.post(
            "/categories", data={"store_id": str(store.id), "name": "Shoes"}, headers=admin_headers
        ).json()["data"]
        client.post(
            "/products",
            data={
                "store_id": str(store.id), "name": "Runner", "description": "Fast shoe",
                "price": "10", "categories": str(category["id"]),
            },
            files=[("images", ("a.png", png, "image/png"))],
            headers=admin_headers,
        )

        response = client.delete(f"/stores/{store.id}", headers=admin_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["failed"] == []
        assert len(response.json()["data"]["succeeded"]) == 2

        db.expire_all()
        assert db.query(Store).count() == 0
        assert db.query(Product).count() == 0
        assert db.query(Category).count() == 0
        assert db.query(user_store_roles).count() == 0

    def test_delete_survives_blob_failures(self, client, db, blobs, store, admin_headers, png):
        client.put(f"/stores/{store.id}", files={"logo": ("a.png", png, "image/png")}, headers=admin_headers)
        blobs.fail_deletes = True
        response = client.delete(f"/stores/{store.id}", headers=admin_headers)
        assert response.status_code == status.HTTP_200_OK
        assert len(response.json()["data"]["failed"]) == 2
        db.expire_all()
        assert db.get(Store, store.id) is None


class TestStaff:
    def test_assign_and_list(self, client, make_user, store, store_admin, admin_headers):
        clerk = make_user(name="Clerk")
        response = client.post(
            f"/stores/{store.id}/staff", json={"user_id": clerk.id, "role": "store_staff"}, headers=admin_headers
        )
        assert response.status_code == status.HTTP_200_OK

        listed = client.get(f"/stores/{store.id}/staff", headers=admin_headers).json()["data"]
        assert {(m["name"], m["store_role"]) for m in listed} == {
            ("Store Admin", "store_admin"),
            ("Clerk", "store_staff"),
        }

    def test_assign_upserts(self, client, db, make_user, store, admin_headers):
        clerk = make_user()
        for role in ("store_staff", "store_manager"):
            client.post(
                f"/stores/{store.id}/staff", json={"user_id": clerk.id, "role": role}, headers=admin_headers
            )
        assert clerk.store_roles(db) == [(store.id, "store_manager")]

    def test_assign_invalid_role(self, client, make_user, store, admin_headers):
        response = client.post(
            f"/stores/{store.id}/staff", json={"user_id": make_user().id, "role": "owner"}, headers=admin_headers
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_assign_unknown_user(self, client, store, admin_headers):
        response = client.post(
            f"/stores/{store.id}/staff", json={"user_id": 9999, "role": "store_staff"}, headers=admin_headers
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_ids_outside_key_range(self, client, store, admin_headers):
        huge = 99999999999999999999
        assert client.get(f"/stores/{huge}").status_code == status.HTTP_404_NOT_FOUND
        response = client.post(
            f"/stores/{store.id}/staff", json={"user_id": huge, "role": "store_staff"}, headers=admin_headers
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND
        response = client.delete(f"/stores/{store.id}/staff/{huge}", headers=admin_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_remove_is_idempotent(self, client, db, make_user, grant, store, admin_headers):
        clerk = make_user()
        grant(clerk, store, "store_staff")
        for _ in range(2):
            response = client.delete(f"/stores/{store.id}/staff/{clerk.id}", headers=admin_headers)
            assert response.status_code == status.HTTP_200_OK
        assert clerk.store_roles(db) == []

    def test_staff_list_requires_manager(self, client, make_user, grant, headers_for, store):
        clerk = make_user()
        grant(clerk, store, "store_staff")
        response = client.get(f"/stores/{store.id}/staff", headers=headers_for(clerk))
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_self_view(self, client, make_user, headers_for, store):
        customer = make_user()
        response = client.get(f"/stores/{store.id}/staff/{customer.id}", headers=headers_for(customer))
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["store_role"] is None

    def test_staff_may_view_others(self, client, make_user, grant, headers_for, store, store_admin):
        clerk = make_user()
        grant(clerk, store, "store_staff")
        response = client.get(f"/stores/{store.id}/staff/{store_admin.id}", headers=headers_for(clerk))
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["store_role"] == "store_admin"

    def test_stranger_cannot_view_others(self, client, make_user, headers_for, store, store_admin):
        stranger = make_user()
        response = client.get(f"/stores/{store.id}/staff/{store_admin.id}", headers=headers_for(stranger))
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestServerErrors:
    def test_unexpected_error_hides_details(self, db_session_override, assets, store, admin_headers, monkeypatch):
        def broken_staff(self, store_id):
            raise RuntimeError("could not connect to server: 10.0.0.5:5432")

        monkeypatch.setattr(StaffRoleRegistry, "staff", broken_staff)
        app.dependency_overrides[get_asset_manager] = lambda: assets
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get(f"/stores/{store.id}/staff", headers=admin_headers)
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"message": "Server error"}
