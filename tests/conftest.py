"""Shared fixtures for the proxyable test suite."""

import pytest

from proxyable import Kernel


class Account:
    """Plain attribute-style target used across tests."""

    kind = "checking"

    def __init__(self, owner="Alice", balance=100):
        self.owner = owner
        self.balance = balance

    def deposit(self, amount):
        self.balance += amount
        return self.balance

    def peek(self):
        return self.balance


@pytest.fixture
def person():
    return {"name": "Alice", "age": 30}


@pytest.fixture
def kernel(person):
    return Kernel(person)


@pytest.fixture
def account():
    return Account()


@pytest.fixture
def account_kernel(account):
    return Kernel(account)
