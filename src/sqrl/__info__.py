# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

__version__ = '0.1.0'

__license__ = 'AGPLv3+'
__webpage__ = 'https://github.com/danpascu/sqrl-protocol'

__author__ = 'Dan Pascu'
__copyright__ = f'Copyright 2025-present {__author__}'
