"""
Shared fixtures
"""
# pylint: disable=unused-wildcard-import,wildcard-import
from tests.fixtures_sockets import *
