#!/usr/bin/env python3
"""Minimal example: log in and print battery level for all Dreame vacuums.

Usage:
    uv run python examples/query_devices.py
"""

import getpass

from unofficial_micloud_api import MiCloudAPI
from unofficial_micloud_api.miot import VACUUM_MODEL_PREFIX, VACUUM_PROPERTIES

username = input("Username: ")
password = getpass.getpass("Password: ")

with MiCloudAPI(region="de") as api:
    api.login(username, password)

    for device in api.list_devices(VACUUM_MODEL_PREFIX):
        for result in api.read_properties(device.did, [VACUUM_PROPERTIES["battery_level"]]):
            print(f"{device.name}: {result.value}% battery")
