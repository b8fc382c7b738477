# signalbridge/gate_api.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse

import requests

from signalbridge.config import MAINNET_URL
from signalbridge.errors import (
    ExchangeAuthError,
    ExchangeError,
    ExchangeTimeout,
    ExchangeValidationError,
    RateLimitError,
)
from signalbridge.signing import GateSigner, Signer, get_signer

logger = logging.getLogger(__name__)

QUOTE_CURRENCIES = ("USDT", "USDC", "BTC", "ETH", "BNB")
STABLE_COINS = {"USDT", "USDC", "BUSD", "DAI", "TUSD"}


def format_symbol(symbol: str) -> str:
    """
    Normalise a TradingView ticker to Gate's pair format.
    BTCUSDT -> BTC_USDT, BINANCE:ETHUSDT.P -> ETH_USDT, btc_usdt -> BTC_USDT.
    """
    s = (symbol or "").strip().upper()
    if ":" in s:
        s = s.rsplit(":", 1)[1]
    if s.endswith(".P"):
        s = s[:-2]
    s = s.replace("/", "_").replace("-", "_")
    if "_" in s:
        return s
    for quote in QUOTE_CURRENCIES:
        if s.endswith(quote) and len(s) > len(quote):
            return f"{s[:-len(quote)]}_{quote}"
    return s


def _num(*values: Any) -> float:
    """First value that parses as a float, else 0.0."""
    for v in values:
        if v is None or v == "":
            continue
        try:
            return float(v)
        except (TypeError, ValueError):
            continue
    return 0.0


def map_futures_account(data: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(data, dict):
        return None
    return {
        "total": _num(data.get("total"), data.get("equity"), data.get("balance")),
        "available": _num(data.get("available"), data.get("available_balance")),
        "positionMargin": _num(data.get("position_margin")),
        "orderMargin": _num(data.get("order_margin")),
        "unrealisedPnl": _num(data.get("unrealised_pnl"), data.get("unrealized_pnl")),
        "currency": str(data.get("currency") or "USDT").upper(),
    }


def map_spot_balances(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, list):
        return []
    out: List[Dict[str, Any]] = []
    for entry in payload:
        available = _num(entry.get("available"))
        locked = _num(entry.get("locked"), entry.get("freeze"))
        total = available + locked
        if total > 0:
            out.append({
                "currency": str(entry.get("currency") or "").upper(),
                "available": available,
                "locked": locked,
                "total": total,
            })
    return out


def map_futures_position(entry: Any) -> Optional[Dict[str, Any]]:
    """Gate futures position -> dashboard shape. Flat positions map to None."""
    if not isinstance(entry, dict):
        return None
    contract = entry.get("contract")
    size = _num(entry.get("size"))
    if not contract or size == 0:
        return None
    mark = _num(entry.get("mark_price"), entry.get("last_price"))
    margin = _num(entry.get("margin"), entry.get("initial_margin"))
    pnl = _num(entry.get("unrealised_pnl"), entry.get("unrealized_pnl"))
    return {
        "contract": contract,
        "size": size,
        "side": "long" if size > 0 else "short",
        "leverage": _num(entry.get("leverage")),
        "margin": margin,
        "pnl": pnl,
        "pnlPercentage": (pnl / margin * 100) if margin else 0.0,
        "entryPrice": _num(entry.get("entry_price")),
        "markPrice": mark,
        "value": abs(size) * mark,
    }


class GateClient:
    """
    Gate.io APIv4 REST client.

    - Private calls are signed with the configured Signer; public market data is not
    - Query params are sorted by key so the signed string matches what is sent
    - Never retries; callers decide (the executor retries idempotent reads only)
    - Upstream failures surface as the ExchangeError family
    """

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        base_url: str = MAINNET_URL,
        signer: Signer | None = None,
        timeout: float = 10,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self._secret = (api_secret or "").strip()
        self.base_url = base_url.rstrip("/")
        self._prefix = urlparse(self.base_url).path.rstrip("/")
        self.signer = signer or GateSigner()
        self.timeout = timeout
        self._http = session or requests.Session()

    # ── Transport ─────────────────────────────────────────────────────────────
    @staticmethod
    def build_query(params: Optional[Dict[str, Any]]) -> str:
        if not params:
            return ""
        items = [(k, v) for k, v in sorted(params.items()) if v is not None]
        return urlencode(items, doseq=True)

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        auth: bool = True,
    ) -> Any:
        method = method.upper()
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        query = self.build_query(params)
        payload = "" if body is None else (body if isinstance(body, str) else json.dumps(body))
        url = f"{self.base_url}{endpoint}" + (f"?{query}" if query else "")

        headers = {"Accept": "application/json"}
        if payload:
            headers["Content-Type"] = "application/json"
        if auth:
            if not self.api_key or not self._secret:
                raise ExchangeAuthError("Exchange API credentials are not configured", status=None)
            headers.update(
                self.signer.headers(self.api_key, self._secret, method, self._prefix + endpoint, query, payload)
            )

        try:
            r = self._http.request(method, url, data=payload or None, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise ExchangeTimeout(f"Gate.io {method} {endpoint} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise ExchangeError(f"Gate.io {method} {endpoint} failed: {exc}") from exc

        logger.debug(f"Gate.io {method} {endpoint} -> {r.status_code}")
        text = r.text or ""
        if r.status_code >= 400:
            raise self._error(r.status_code, text)
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ExchangeError(
                "Failed to parse Gate.io API response", status=r.status_code, body=text[:500]
            ) from exc

    @staticmethod
    def _error(status: int, text: str) -> ExchangeError:
        message, label = text or f"HTTP {status}", None
        try:
            parsed = json.loads(text) if text else None
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            label = parsed.get("label")
            message = parsed.get("message") or label or message

        if status == 429:
            cls = RateLimitError
        elif status in (401, 403):
            cls = ExchangeAuthError
        elif status == 400:
            cls = ExchangeValidationError
        else:
            cls = ExchangeError
        return cls(message, status=status, label=label, body=text[:500])

    # ── Wallet / accounts ─────────────────────────────────────────────────────
    def get_total_balance(self, currency: str = "USDT") -> Dict[str, Any]:
        return self.request("GET", "/wallet/total_balance", params={"currency": currency})

    def get_spot_accounts(self, currency: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.request("GET", "/spot/accounts", params={"currency": currency}) or []

    def get_futures_account(self, settle: str = "usdt") -> Dict[str, Any]:
        return self.request("GET", f"/futures/{settle}/accounts")

    def get_futures_positions(self, settle: str = "usdt") -> List[Dict[str, Any]]:
        return self.request("GET", f"/futures/{settle}/positions") or []

    # ── Spot orders ───────────────────────────────────────────────────────────
    def list_spot_orders(self, pair: str, status: str = "open", limit: int = 100) -> List[Dict[str, Any]]:
        """status: 'open' or 'finished'."""
        if status not in ("open", "finished"):
            raise ValueError("status must be 'open' or 'finished'")
        return self.request(
            "GET", "/spot/orders", params={"currency_pair": pair, "status": status, "limit": limit}
        ) or []

    def get_my_trades(self, pair: str, limit: int = 100) -> List[Dict[str, Any]]:
        return self.request("GET", "/spot/my_trades", params={"currency_pair": pair, "limit": limit}) or []

    def create_spot_order(
        self,
        pair: str,
        side: str,
        amount: float | str,
        price: float | str | None = None,
        order_type: str = "limit",
    ) -> Dict[str, Any]:
        side = side.lower()
        if side not in ("buy", "sell"):
            raise ValueError("side must be 'buy' or 'sell'")
        if order_type not in ("limit", "market"):
            raise ValueError("order_type must be 'limit' or 'market'")
        order: Dict[str, Any] = {
            "currency_pair": pair,
            "side": side,
            "amount": str(amount),
            "type": order_type,
            "account": "spot",
        }
        if order_type == "limit":
            if price is None:
                raise ValueError("limit orders need a price")
            order["price"] = str(price)
            order["time_in_force"] = "gtc"
        else:
            order["time_in_force"] = "ioc"
        return self.request("POST", "/spot/orders", body=order)

    def cancel_spot_order(self, order_id: str, pair: str) -> Dict[str, Any]:
        return self.request("DELETE", f"/spot/orders/{order_id}", params={"currency_pair": pair})

    def cancel_all_spot_orders(self, pair: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.request("DELETE", "/spot/orders", params={"currency_pair": pair}) or []

    # ── Futures orders ────────────────────────────────────────────────────────
    def create_futures_order(
        self,
        contract: str,
        size: int,
        price: str = "0",
        tif: str = "ioc",
        reduce_only: bool = False,
        text: str = "t-webhook",
        settle: str = "usdt",
    ) -> Dict[str, Any]:
        """Signed size: > 0 buys (long), < 0 sells (short). price "0" with ioc is a market order."""
        order: Dict[str, Any] = {
            "contract": contract,
            "size": int(size),
            "price": str(price),
            "tif": tif,
            "text": text,
        }
        if reduce_only:
            order["reduce_only"] = True
        return self.request("POST", f"/futures/{settle}/orders", body=order)

    def set_leverage(self, contract: str, leverage: int, settle: str = "usdt") -> Dict[str, Any]:
        return self.request(
            "POST", f"/futures/{settle}/positions/{contract}/leverage", params={"leverage": str(leverage)}
        )

    # ── Public market data ────────────────────────────────────────────────────
    def get_ticker(self, pair: str) -> Dict[str, Any]:
        data = self.request("GET", "/spot/tickers", params={"currency_pair": pair}, auth=False)
        if not data:
            raise ExchangeError(f"No ticker for {pair}", status=None)
        return data[0] if isinstance(data, list) else data

    def get_order_book(self, pair: str, limit: int = 15) -> Dict[str, Any]:
        data = self.request(
            "GET", "/spot/order_book", params={"currency_pair": pair, "limit": limit}, auth=False
        ) or {}
        return {
            "pair": pair,
            "asks": [(float(p), float(q)) for p, q in data.get("asks", [])],
            "bids": [(float(p), float(q)) for p, q in data.get("bids", [])],
            "ts": int(data.get("current") or 0),
        }

    def get_candles(self, pair: str, interval: str = "1h", limit: int = 100) -> List[Dict[str, Any]]:
        """Spot candlesticks, oldest first. Gate rows are [t, volume, close, high, low, open, ...]."""
        data = self.request(
            "GET",
            "/spot/candlesticks",
            params={"currency_pair": pair, "interval": interval, "limit": limit},
            auth=False,
        ) or []
        out = []
        for item in data:
            ts = int(float(item[0]))
            if ts > 10_000_000_000:  # ms → s guard
                ts //= 1000
            out.append({
                "ts": ts,
                "open": float(item[5]),
                "high": float(item[3]),
                "low": float(item[4]),
                "close": float(item[2]),
                "volume": float(item[1]),
            })
        out.sort(key=lambda c: c["ts"])
        return out

    def get_futures_ticker(self, contract: str, settle: str = "usdt") -> Dict[str, Any]:
        data = self.request("GET", f"/futures/{settle}/tickers", params={"contract": contract}, auth=False)
        if not data:
            raise ExchangeError(f"No futures ticker for {contract}", status=None)
        return data[0] if isinstance(data, list) else data

    def get_futures_contract(self, contract: str, settle: str = "usdt") -> Dict[str, Any]:
        return self.request("GET", f"/futures/{settle}/contracts/{contract}", auth=False)

    # ── Aggregates ────────────────────────────────────────────────────────────
    def fetch_account_snapshot(self) -> Dict[str, Any]:
        """
        Futures account, spot balances and open futures positions in one dict.

        Individual failures are logged and skipped. If nothing could be loaded the
        call raises ExchangeAuthError when any part was refused, else ExchangeError.
        """
        snapshot: Dict[str, Any] = {"futures": None, "spot": [], "positions": [], "totalEstimatedValue": 0.0}
        loaded = 0
        auth_failure = False

        calls = (
            ("futures account", "futures", lambda: map_futures_account(self.get_futures_account())),
            ("spot balances", "spot", lambda: map_spot_balances(self.get_spot_accounts())),
            (
                "futures positions",
                "positions",
                lambda: [p for p in map(map_futures_position, self.get_futures_positions()) if p],
            ),
        )
        for label, key, call in calls:
            try:
                snapshot[key] = call()
                loaded += 1
            except ExchangeError as exc:
                if isinstance(exc, ExchangeAuthError):
                    auth_failure = True
                logger.warning(f"Gate.io: failed to load {label}: {exc.message}")

        if not loaded:
            if auth_failure:
                raise ExchangeAuthError("Gate.io rejected the API key; check its permissions", status=403)
            raise ExchangeError("Could not load Gate.io account information", status=502)

        total = snapshot["futures"]["total"] if snapshot["futures"] else 0.0
        total += sum(b["total"] for b in snapshot["spot"] if b["currency"] in STABLE_COINS)
        snapshot["totalEstimatedValue"] = total
        return snapshot


class GateClientFactory:
    """Builds GateClients from a subscriber's exchange connection (or a public one for None)."""

    def __init__(self, config, session: requests.Session | None = None) -> None:
        self.config = config
        self.signer = get_signer(config.exchange_signer)
        self._http = session or requests.Session()

    def __call__(self, connection=None) -> GateClient:
        if connection is None:
            return GateClient(
                base_url=self.config.gate_api_url,
                signer=self.signer,
                timeout=self.config.exchange_timeout,
                session=self._http,
            )
        return GateClient(
            api_key=connection.api_key,
            api_secret=connection.api_secret,
            base_url=self.config.base_url(connection.testnet),
            signer=self.signer,
            timeout=self.config.exchange_timeout,
            session=self._http,
        )
