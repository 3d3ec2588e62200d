"""Conversation testing tools."""
from testing.asserts import AnyResponseAssert, ResponseAssert
from testing.tester import Tester

__all__ = ["Tester", "ResponseAssert", "AnyResponseAssert"]
