# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""execctl - Exec sessions for running containers."""

__version__ = "0.1.0"
