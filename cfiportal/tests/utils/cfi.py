from __future__ import annotations

import json
from typing import Any, Callable

import httpx
from httpx import AsyncClient


USER_ID = 42
HOME_DIVISION = 10
OTHER_DIVISION = 20
FOREIGN_DIVISION = 30
LOGIN_TOKEN = "0f8fad5b-d9cb-469f-a165-70867728950e"
SESSION_TOKEN = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


def identity_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "id": USER_ID,
        "idDivision": HOME_DIVISION,
        "nomDivision": "Paris Centre",
        "nom": "Martin",
        "prenom": "Claire",
        "email": "claire.martin@example.com",
        "type_d_option_GA": "standard",
        "jeton": SESSION_TOKEN,
    }
    payload.update(overrides)
    return payload


def stock_payload(stock_id: int, *, qte: float | None, stock_minimum: float | None) -> dict[str, Any]:
    return {
        "id": stock_id,
        "idDivision": HOME_DIVISION,
        "nom": f"Flyer {stock_id}",
        "refStockage": f"REF-{stock_id}",
        "qte": qte,
        "stockMinimum": stock_minimum,
    }


Responder = Callable[[httpx.Request, dict[str, Any]], httpx.Response]


class FakeCfiApi:
    """In-memory stand-in for the CFI business API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict[str, Any], httpx.Headers]] = []
        self._routes: dict[str, tuple[int, Any] | Responder] = {
            "/Utilisateurs/getUtilisateurGorillias": (200, identity_payload()),
            "/Utilisateurs/getUtilisateurMyCFiA": (200, identity_payload()),
            "/Division/getDivisions": (
                200,
                [{"id": HOME_DIVISION, "nom": "Paris Centre"}, {"id": OTHER_DIVISION, "nom": "Lyon Part-Dieu"}],
            ),
            "/Stocks/getStocks": (
                200,
                [
                    stock_payload(1, qte=5, stock_minimum=10),
                    stock_payload(2, qte=50, stock_minimum=10),
                    stock_payload(3, qte=None, stock_minimum=10),
                ],
            ),
            "/Facturations/getFacturations": (
                200,
                {
                    "data": [
                        {
                            "id": 501,
                            "dateMiseADispo": "2024-03-05T00:00:00",
                            "moisFacturation": "2024-02-01T00:00:00",
                            "factures": [],
                        }
                    ]
                },
            ),
            "/Campagnes/getLignesCampagnes": (
                200,
                [{"id": 900, "nom": "Rentree", "type": "courrier", "dateCreation": "2024-09-01T08:00:00"}],
            ),
            "/Operations/getEtatsOperations": (
                200,
                [{"id": 1, "libelle": "En cours"}, {"id": 2, "libelle": "Terminee"}],
            ),
            "/Utilisateurs/getDroitsUtilisateur": (
                200,
                {"connexion": True, "administrateur": False, "stocks_Visu": True, "telechargementHD": 2},
            ),
        }

    def set(self, endpoint: str, status_code: int, payload: Any) -> None:
        self._routes[endpoint] = (status_code, payload)

    def set_responder(self, endpoint: str, responder: Responder) -> None:
        self._routes[endpoint] = responder

    def calls(self, endpoint: str) -> list[dict[str, Any]]:
        return [body for path, body, _headers in self.requests if path == endpoint]

    def headers_for(self, endpoint: str) -> list[httpx.Headers]:
        return [headers for path, _body, headers in self.requests if path == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        body = json.loads(request.content) if request.content else {}
        self.requests.append((path, body, request.headers))
        route = self._routes.get(path)
        if route is None:
            return httpx.Response(404, json={"message": f"unknown endpoint {path}"})
        if callable(route):
            return route(request, body)
        status_code, payload = route
        return httpx.Response(status_code, json=payload)


async def login(client: AsyncClient, token: str = LOGIN_TOKEN) -> dict[str, Any]:
    # Log in through the API so the session cookie lands in the client jar.
    response = await client.post("/auth/login", json={"mode": "token", "jetonUtilisateur": token})
    assert response.status_code == 200, response.text
    return response.json()
