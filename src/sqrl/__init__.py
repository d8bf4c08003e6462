# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
SQRL (Secure Quick Reliable Login) protocol messages.

   The client and the server exchange a chain of messages where every client
   request carries its own parameters, the previous server response (or the
   SQRL URL that started the exchange) and the signatures over both of them.

"""

from .__info__ import __version__

__all__ = '__version__',  # noqa: COM818
