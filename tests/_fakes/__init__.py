# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Shared test fakes for buildkit.

Provides a fake build unit, a recording observer, and helpers that lay
out package trees on disk, so that individual test modules don't need to
duplicate boilerplate.

Usage::

    from tests._fakes import FakeUnitFactory, RecordingObserver, write_package

    factory = FakeUnitFactory(failing={'core'})
    observer = RecordingObserver()
"""

from tests._fakes._observer import RecordingObserver as RecordingObserver
from tests._fakes._tree import make_package as make_package, write_package as write_package
from tests._fakes._units import FakeUnit as FakeUnit, FakeUnitFactory as FakeUnitFactory

__all__ = [
    'FakeUnit',
    'FakeUnitFactory',
    'RecordingObserver',
    'make_package',
    'write_package',
]
