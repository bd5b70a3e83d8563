from __future__ import annotations

import json
import socket
import unittest
from unittest import mock
from urllib.error import URLError

from chain_fixtures import make_account, tx_hash

from cellsim.client import NodeClient, RpcError, TransactionRejected, Unreachable, normalize_url
from cellsim.models import CellInput, CellOutput, OutPoint, Transaction


def _response(payload: object) -> mock.MagicMock:
    response = mock.MagicMock()
    response.__enter__.return_value.read.return_value = json.dumps(payload).encode("utf-8")
    return response


def _header(number: int) -> dict:
    return {
        "number": hex(number),
        "hash": "0x" + tx_hash(f"h{number}").hex(),
        "parent_hash": "0x" + tx_hash(f"h{number - 1}").hex(),
        "timestamp": "0x0",
    }


class NodeClientTest(unittest.TestCase):
    def test_normalize_url(self) -> None:
        self.assertEqual(normalize_url("127.0.0.1:8114"), "http://127.0.0.1:8114")
        with self.assertRaises(ValueError):
            normalize_url("ftp://node")
        with self.assertRaises(ValueError):
            normalize_url("  ")

    def test_get_tip_header(self) -> None:
        client = NodeClient("http://127.0.0.1:8114", timeout_ms=2500)
        with mock.patch("cellsim.client.urlopen", return_value=_response({"jsonrpc": "2.0", "id": 1, "result": _header(9)})) as urlopen:
            header = client.get_tip_header()

        self.assertEqual(header.number, 9)
        self.assertEqual(header.hash, tx_hash("h9"))
        request = urlopen.call_args.args[0]
        body = json.loads(request.data.decode("utf-8"))
        self.assertEqual(body["method"], "get_tip_header")
        self.assertEqual(body["params"], [])
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 2.5)

    def test_get_block_by_number(self) -> None:
        lock = make_account().script
        block = {
            "header": _header(3),
            "transactions": [
                {
                    "hash": "0x" + tx_hash("t").hex(),
                    "inputs": [
                        {"since": "0x0", "previous_output": {"tx_hash": "0x" + tx_hash("p").hex(), "index": "0x1"}}
                    ],
                    "outputs": [{"capacity": hex(6_100_000_000), "lock": lock.to_json(), "type": None}],
                    "outputs_data": ["0x"],
                    "witnesses": [],
                }
            ],
        }
        client = NodeClient("http://node:8114")
        with mock.patch("cellsim.client.urlopen", return_value=_response({"id": 1, "result": block})) as urlopen:
            view = client.get_block_by_number(3)

        self.assertEqual(json.loads(urlopen.call_args.args[0].data)["params"], ["0x3"])
        self.assertEqual(view.number, 3)
        self.assertEqual(view.transactions[0].inputs, (OutPoint(tx_hash("p"), 1),))
        self.assertEqual(view.transactions[0].outputs, ((6_100_000_000, lock),))

    def test_missing_block_is_none(self) -> None:
        client = NodeClient("http://node:8114")
        with mock.patch("cellsim.client.urlopen", return_value=_response({"id": 1, "result": None})):
            self.assertIsNone(client.get_block_by_number(100))

    def test_send_transaction_passthrough(self) -> None:
        account = make_account()
        tx = Transaction(
            inputs=[CellInput(OutPoint(tx_hash("p"), 0))],
            outputs=[CellOutput(capacity=6_100_000_000, lock=account.script)],
            outputs_data=[b""],
        )
        client = NodeClient("http://node:8114")
        result = {"id": 1, "result": "0x" + tx.calc_tx_hash().hex()}
        with mock.patch("cellsim.client.urlopen", return_value=_response(result)) as urlopen:
            self.assertEqual(client.send_transaction(tx), tx.calc_tx_hash())

        body = json.loads(urlopen.call_args.args[0].data)
        self.assertEqual(body["params"][1], "passthrough")
        self.assertEqual(body["params"][0]["outputs_data"], ["0x"])

    def test_rejection(self) -> None:
        client = NodeClient("http://node:8114")
        error = {"id": 1, "error": {"code": -1108, "message": "PoolIsFull"}}
        with mock.patch("cellsim.client.urlopen", return_value=_response(error)):
            with self.assertRaises(TransactionRejected) as caught:
                client.send_transaction(Transaction())
        self.assertEqual(caught.exception.code, -1108)
        self.assertEqual(caught.exception.message, "PoolIsFull")

        with mock.patch("cellsim.client.urlopen", return_value=_response(error)):
            with self.assertRaises(RpcError):
                client.get_tip_header()

    def test_transport_failures_are_unreachable(self) -> None:
        client = NodeClient("http://node:8114")
        with mock.patch("cellsim.client.urlopen", side_effect=URLError("refused")):
            with self.assertRaises(Unreachable):
                client.get_tip_header()
        with mock.patch("cellsim.client.urlopen", side_effect=socket.timeout("slow")):
            with self.assertRaisesRegex(Unreachable, "Timeout"):
                client.get_tip_header()
        with mock.patch("cellsim.client.urlopen", return_value=_response([1, 2])):
            with self.assertRaises(Unreachable):
                client.get_tip_header()
        with mock.patch("cellsim.client.urlopen", return_value=_response({"id": 1, "result": {"number": "0x1"}})):
            with self.assertRaisesRegex(Unreachable, "malformed"):
                client.get_tip_header()


if __name__ == "__main__":
    unittest.main()
