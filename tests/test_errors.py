import pytest

from storefront.errors import (
    DuplicateUsername,
    NotFound,
    OutOfStock,
    SetupAlreadyCompleted,
    StorageError,
    ValidationError,
)


@pytest.fixture
def client(app):
    raisers = {
        "not-found": lambda: NotFound("Product not found"),
        "invalid": lambda: ValidationError("price must be >= 0"),
        "out-of-stock": lambda: OutOfStock(5),
        "duplicate": lambda: DuplicateUsername("alice"),
        "setup-done": lambda: SetupAlreadyCompleted(),
        "storage": lambda: StorageError("disk I/O error at /var/lib/storefront"),
    }

    @app.route("/raise/<kind>")
    def raise_store_error(kind):
        raise raisers[kind]()

    return app.test_client()


@pytest.mark.parametrize("kind, status, message", [
    ("not-found", 404, "Product not found"),
    ("invalid", 400, "price must be >= 0"),
    ("out-of-stock", 409, "Product 5 is out of stock"),
    ("duplicate", 409, "Username already taken"),
    ("setup-done", 403, "Setup already completed"),
    ("storage", 500, "Storage failure"),
])
def test_store_errors_translate_to_json(client, kind, status, message):
    response = client.get(f"/raise/{kind}")

    assert response.status_code == status
    assert response.get_json() == {"error": message}


def test_storage_error_detail_is_not_leaked(client):
    response = client.get("/raise/storage")
    assert "/var/lib" not in response.get_data(as_text=True)


def test_validation_error_is_a_value_error():
    assert issubclass(ValidationError, ValueError)
