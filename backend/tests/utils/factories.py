"""Test data factories using Faker for generating realistic test data."""
from typing import Any

from faker import Faker

fake = Faker()


class OwnerFactory:
    """Factory for creating owner payloads."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create owner test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Owner data (signed-in user on the free plan by default)
        """
        data = {
            "owner_type": "user",
            "owner_id": fake.uuid4(),
            "plan": "free",
        }
        if overrides:
            data.update(overrides)
        return data

    @staticmethod
    def guest(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {"owner_type": "guest", "owner_id": fake.ipv4_public()}
        if overrides:
            data.update(overrides)
        return data


class ChargeFactory:
    """Factory for creating charge request payloads."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "feature": fake.random_element(["voice", "ai-image", "ai-video", "prompt"]),
            "owner": OwnerFactory.create(),
            "needed_tenths": fake.random_int(min=1, max=50),
            "external_job_id": f"job_{fake.bothify('????########')}",
        }
        if overrides:
            data.update(overrides)
        return data


class CreditPackFactory:
    """Factory for creating credit pack payloads as sent by the billing webhook."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "owner_id": fake.uuid4(),
            "pack_id": f"cs_{fake.bothify('????????????????')}",
            "tenths": fake.random_element([500, 1000, 2500]),
        }
        if overrides:
            data.update(overrides)
        return data
