"""FormVault Meta information.
   FormVault keeps in-progress form data encrypted on the user's own device.
"""
__title__ = 'formvault'
__description__ = (
   'FormVault keeps in-progress form data encrypted '
   'on the user device, protected by a passphrase.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
