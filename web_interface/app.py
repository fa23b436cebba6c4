#!/usr/bin/env python3
"""
Web interface for the Time-Lock Savings Vault
"""

from flask import Flask, request, jsonify
import logging
import os
import sys

# Add repository root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from savings_vault.errors import (
    VaultError, VaultNotFound, Unauthorized, AddressOccupied,
    AlreadyWithdrawn, StillLocked, TransferFailed, TransferError, CustodyNotEmpty
)
from savings_vault.keys import decode_address
from savings_vault.ledger import Ledger, AssetType, AccountInUse, ReservedAddress
from savings_vault.requests import CreateVaultRequest, WithdrawRequest
from savings_vault.rules import LockRules
from savings_vault.transfer import AssetTransferService
from savings_vault.vault import TimeLockVault

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    VaultNotFound: 404,
    Unauthorized: 403,
    AddressOccupied: 409,
    AlreadyWithdrawn: 409,
    StillLocked: 409,
    CustodyNotEmpty: 409,
    TransferFailed: 502,
}


def error_response(error: VaultError):
    status = ERROR_STATUS.get(type(error), 400)
    body = {'success': False}
    body.update(error.to_dict())
    return jsonify(body), status


def json_body() -> dict:
    """Request body as a JSON object; anything else reads as empty"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def create_app(ledger: Ledger = None, enable_faucet: bool = None) -> Flask:
    """Build the Flask app around one ledger and vault program"""
    app = Flask(__name__)
    app.secret_key = os.environ.get('SECRET_KEY', 'demo_secret_key_change_in_production')

    ledger = ledger or Ledger()
    transfers = AssetTransferService(ledger)
    vault = TimeLockVault(ledger, transfers, rules=LockRules.from_env())

    if enable_faucet is None:
        enable_faucet = os.environ.get('VAULT_ENABLE_FAUCET', '0') == '1'

    app.config['LEDGER'] = ledger
    app.config['VAULT'] = vault
    app.config['ENABLE_FAUCET'] = enable_faucet

    @app.route('/')
    def index():
        """Service description"""
        return jsonify({
            'service': 'savings_vault',
            'program_id': vault.program_id,
            'min_lock_days': vault.rules.min_lock_days,
            'max_lock_days': vault.rules.max_lock_days,
            'assets': [a.name for a in AssetType]
        })

    @app.route('/api/accounts', methods=['POST'])
    def open_account():
        """Open a funding, destination or custody account"""
        data = json_body()
        try:
            address = data['address']
            decode_address(address)
            if 'custody_for' in data:
                authority = vault.vault_address(data['custody_for'])
            else:
                authority = data['authority']
                decode_address(authority)
            ledger.open_account(address, authority)
        except (KeyError, ValueError) as e:
            return jsonify({'success': False, 'error': f"Invalid account request: {e}"}), 400
        except ReservedAddress as e:
            return jsonify({'success': False, 'error': str(e)}), 403
        except AccountInUse as e:
            return jsonify({'success': False, 'error': str(e)}), 409

        return jsonify({'success': True, 'address': address, 'authority': authority})

    @app.route('/api/accounts/<address>')
    def get_account(address):
        if not ledger.account_exists(address):
            return jsonify({'error': 'Account not found'}), 404

        account = ledger.get_account(address)
        return jsonify({
            'address': address,
            'authority': account.authority,
            'balances': {asset.name: account.balance_of(asset) for asset in AssetType}
        })

    @app.route('/api/accounts/<address>/credit', methods=['POST'])
    def credit_account(address):
        """Faucet for test deployments"""
        if not app.config['ENABLE_FAUCET']:
            return jsonify({'error': 'Faucet disabled'}), 404

        data = json_body()
        try:
            asset = AssetType[data['asset_type']]
            ledger.credit(address, asset, int(data['amount']))
        except (KeyError, ValueError, TransferError) as e:
            logger.warning(f"Faucet credit to {address} failed: {e}")
            return jsonify({'success': False, 'error': str(e)}), 400

        return jsonify({'success': True, 'balance': ledger.balance(address, asset)})

    @app.route('/api/vaults', methods=['POST'])
    def create_vault():
        """Create and fund a new time-locked vault"""
        try:
            vault_request = CreateVaultRequest.from_dict(json_body())
        except ValueError as e:
            return jsonify({'success': False, 'error': str(e)}), 400

        try:
            event = vault.create_vault(vault_request)
        except VaultError as e:
            return error_response(e)

        return jsonify({'success': True, **event})

    @app.route('/api/vaults/<owner>')
    def get_vault(owner):
        """Vault receipt"""
        try:
            record = vault.get_vault(owner)
        except ValueError:
            return jsonify({'error': 'Invalid owner identity'}), 400
        except VaultError as e:
            return error_response(e)

        receipt = record.to_dict()
        receipt['vault_address'] = vault.vault_address(owner)
        return jsonify(receipt)

    @app.route('/api/vaults/<owner>/withdraw', methods=['POST'])
    def withdraw(owner):
        """Withdraw a matured vault"""
        data = dict(json_body())
        data.setdefault('owner', owner)
        if data['owner'] != owner:
            return jsonify({'success': False, 'error': 'Owner in path and body differ'}), 400

        try:
            withdraw_request = WithdrawRequest.from_dict(data)
        except ValueError as e:
            return jsonify({'success': False, 'error': str(e)}), 400

        try:
            event = vault.withdraw(withdraw_request)
        except VaultError as e:
            return error_response(e)

        return jsonify({'success': True, **event})

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.environ.get("PORT", 10000))
    create_app().run(
        host="0.0.0.0",
        port=port,
        debug=False
    )
