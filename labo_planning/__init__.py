"""
Labo Planning - Lab session scheduling and validation

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

__version__ = "1.0.0"
__version_info__ = (1, 0, 0)
