"""
Gasless UserOperation relay HTTP server

A Flask application that:
1. Resolves counterfactual smart account addresses and nonces for an owner
2. Builds (and optionally sponsors) token UserOperations for the owner to sign
3. Verifies and submits owner-signed UserOperations through a bundler or handleOps
"""

import argparse
import logging
import re
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from web3 import Web3

from config import ZERO_ADDRESS, RelayConfig
from errors import InputValidationError, RelayError, SubmissionError
from smart_account import RelayService
from user_operations import convert_user_operation_to_rpc_format

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ADDRESS_HEX_LENGTH = len(ZERO_ADDRESS)
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_UINT_RE = re.compile(r"^[0-9]+$")
MAX_UINT256 = 2 ** 256 - 1

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": (
        "Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, Authorization, "
        "accept, origin, Cache-Control, X-Requested-With"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS, GET, PUT",
}


def parse_address(value: Optional[str]) -> Optional[str]:
    """Checksummed address from 0x-prefixed or bare hex; None if missing, malformed or zero"""
    if not value:
        return None
    value = value.strip()
    if not value.startswith("0x"):
        value = "0x" + value
    if len(value) != ADDRESS_HEX_LENGTH or not _ADDRESS_RE.match(value):
        return None
    if int(value, 16) == 0:
        return None
    return Web3.to_checksum_address(value)


def parse_salt(value: Optional[str]) -> Optional[int]:
    """Salt defaults to 0 when absent; None when present but not a uint256"""
    if value is None or value.strip() == "":
        return 0
    value = value.strip()
    if not _UINT_RE.match(value):
        return None
    salt = int(value)
    return salt if salt <= MAX_UINT256 else None


def parse_amount(value: Optional[str]) -> Optional[int]:
    if value is None or not _UINT_RE.match(value.strip()):
        return None
    amount = int(value.strip())
    return amount if amount <= MAX_UINT256 else None


def require_params(**params: Any) -> None:
    invalid = sorted(name for name, value in params.items() if value is None)
    if invalid:
        raise InputValidationError(f"invalid or missing parameter(s): {', '.join(invalid)}")


class RelayRequestHandler:
    """Maps HTTP requests onto RelayService flows"""

    def __init__(self, relay_service: Optional[RelayService] = None):
        self.app = Flask(__name__)
        self.relay_service = relay_service or RelayService(RelayConfig.from_env())
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up Flask routes"""
        self.app.after_request(self._add_cors_headers)
        self.app.before_request(self._handle_preflight)
        self.app.register_error_handler(RelayError, self._handle_relay_error)

        self.app.route("/health", methods=["GET"])(self.health_check)
        self.app.route("/erc4337/sender-info", methods=["GET"])(self.handle_get_sender_info)
        self.app.route("/erc4337/sender-address", methods=["GET"])(self.handle_get_sender_address)
        self.app.route("/erc4337/userop/approve", methods=["GET"])(self.handle_user_op_approve)
        self.app.route("/erc4337/userop/mint", methods=["GET"])(self.handle_user_op_mint)
        self.app.route("/erc4337/userop/withdrawto", methods=["GET"])(self.handle_user_op_withdraw_to)
        self.app.route("/erc4337/userop/transfer", methods=["GET"])(self.handle_user_op_transfer)
        self.app.route("/erc4337/userop/send", methods=["POST"])(self.handle_user_op_send)

    @staticmethod
    def _add_cors_headers(response):
        response.headers.update(CORS_HEADERS)
        return response

    @staticmethod
    def _handle_preflight():
        if request.method == "OPTIONS":
            return "", 204
        return None

    @staticmethod
    def _handle_relay_error(error: RelayError):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {error}")
        else:
            logger.warning(f"{request.method} {request.path} rejected: {error}")
        body: Dict[str, Any] = {"error": str(error)}
        if isinstance(error, SubmissionError) and error.user_operation_hash:
            body["op hash"] = error.user_operation_hash
        return jsonify(body), error.status_code

    def _owner_and_salt(self):
        owner = parse_address(request.args.get("owner"))
        salt = parse_salt(request.args.get("salt"))
        return owner, salt

    def handle_get_sender_info(self):
        owner, salt = self._owner_and_salt()
        require_params(owner=owner, salt=salt)

        nonce, sender = self.relay_service.get_sender_info(owner, salt)
        return jsonify({"nonce": nonce, "sender": sender})

    def handle_get_sender_address(self):
        owner, salt = self._owner_and_salt()
        require_params(owner=owner, salt=salt)

        return jsonify({"sender": self.relay_service.get_sender_address(owner, salt)})

    def handle_user_op_approve(self):
        owner, salt = self._owner_and_salt()
        target = parse_address(request.args.get("target"))
        spender = parse_address(request.args.get("spender"))
        amount = parse_amount(request.args.get("amount"))
        require_params(owner=owner, salt=salt, target=target, spender=spender, amount=amount)

        user_op = self.relay_service.approve(target, spender, owner, salt, amount)
        return jsonify(convert_user_operation_to_rpc_format(user_op))

    def handle_user_op_mint(self):
        owner, salt, target, to, amount = self._transfer_like_params()

        user_op = self.relay_service.mint(target, to, owner, salt, amount)
        return jsonify(convert_user_operation_to_rpc_format(user_op))

    def handle_user_op_withdraw_to(self):
        owner, salt, target, to, amount = self._transfer_like_params()

        user_op = self.relay_service.withdraw_to(target, to, owner, salt, amount)
        return jsonify(convert_user_operation_to_rpc_format(user_op))

    def handle_user_op_transfer(self):
        owner, salt, target, to, amount = self._transfer_like_params()

        user_op, result = self.relay_service.transfer(target, to, owner, salt, amount)
        return jsonify({
            "op": convert_user_operation_to_rpc_format(user_op),
            "op hash": result.user_operation_hash,
        })

    def handle_user_op_send(self):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or not isinstance(payload.get("op"), dict):
            raise InputValidationError("request body must be a JSON object with an 'op' object")

        entry_point = payload.get("entryPoint")
        if entry_point is not None:
            entry_point = parse_address(entry_point) if isinstance(entry_point, str) else None
            require_params(entryPoint=entry_point)

        salt = payload.get("salt", 0)
        if isinstance(salt, bool) or not isinstance(salt, int) or not 0 <= salt <= MAX_UINT256:
            raise InputValidationError(f"invalid salt: {salt!r}")

        result = self.relay_service.send_user_operation(payload["op"], entry_point=entry_point, salt=salt)
        return jsonify({"op hash": result.user_operation_hash})

    def _transfer_like_params(self):
        owner, salt = self._owner_and_salt()
        target = parse_address(request.args.get("target"))
        to = parse_address(request.args.get("to"))
        amount = parse_amount(request.args.get("amount"))
        require_params(owner=owner, salt=salt, target=target, to=to, amount=amount)
        return owner, salt, target, to, amount

    def health_check(self):
        """Dead-simple health check endpoint"""
        return "ok", 200

    def run(self, host: str, port: int) -> None:
        """Run the Flask application"""
        self.app.run(host=host, port=port)


def main() -> None:
    config = RelayConfig.from_env()
    parser = argparse.ArgumentParser(description="Gasless ERC-4337 UserOperation relay")
    parser.add_argument("--host", default=config.host, help="interface to listen on")
    parser.add_argument("--port", type=int, default=config.port, help="port to listen on")
    args = parser.parse_args()

    handler = RelayRequestHandler(RelayService(config))
    logger.info(f"server starting at {args.host}:{args.port}")
    handler.run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
