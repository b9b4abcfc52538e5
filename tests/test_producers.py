"""Tests for the producer and product catalogue endpoints."""
import pytest


@pytest.mark.anyio
async def test_create_and_read_producer(client):
    response = await client.post(
        "/producers",
        json={"business_name": "Loja da Ana", "email": "ana@example.com", "platform_fee_percentage": "7.5"},
    )

    assert response.status_code == 201, response.text
    created = response.json()
    assert created["status"] == "pending"
    assert created["platform_fee_percentage"] == "7.50"
    assert created["mp_connected"] is False

    fetched = await client.get(f"/producers/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["business_name"] == "Loja da Ana"


@pytest.mark.anyio
async def test_producer_fee_out_of_range(client):
    response = await client.post(
        "/producers",
        json={"business_name": "Loja", "email": "loja@example.com", "platform_fee_percentage": "101"},
    )

    assert response.status_code == 422


@pytest.mark.anyio
async def test_products(client, make_producer):
    producer = make_producer()

    created = await client.post(f"/producers/{producer.id}/products", json={"name": "Curso", "price": "49.99"})
    assert created.status_code == 201, created.text
    assert created.json()["currency"] == "BRL"

    listed = await client.get(f"/producers/{producer.id}/products")
    assert [item["name"] for item in listed.json()] == ["Curso"]


@pytest.mark.anyio
@pytest.mark.parametrize("body", [{"name": "Curso", "price": "0"}, {"name": "Curso", "price": "10.001"}, {"name": "Curso", "price": "10", "currency": "USD"}])
async def test_invalid_product(client, make_producer, body):
    producer = make_producer()

    response = await client.post(f"/producers/{producer.id}/products", json=body)

    assert response.status_code == 422


@pytest.mark.anyio
async def test_products_of_unknown_producer(client):
    response = await client.get("/producers/999999/products")

    assert response.status_code == 404
    assert response.json()["code"] == "PRODUCER_NOT_FOUND"
