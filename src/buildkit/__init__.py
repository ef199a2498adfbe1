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

"""buildkit: dependency-ordered builds for JavaScript-style monorepos.

buildkit reads ``package.json`` manifests, links workspace members into a
dependency graph, and builds them one at a time with every dependency
built before its dependents. In watch mode it rebuilds changed packages
through a debounced priority queue.
"""

__version__ = '0.1.0'
