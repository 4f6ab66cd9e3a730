"""
GHL (LeadConnector) opportunities adapter.

Implements the opportunity writer against the GHL v2 API:
  GET  /opportunities/search        list a pipeline's opportunities
  PUT  /opportunities/{id}          stage / status / value changes
  POST /opportunities/              create (after upserting the contact)
  POST /contacts/{id}/notes         loss reason + notes

Canonical stages map to GHL pipelineStageIds through a per-location table;
Won and Lost are carried by the opportunity status.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from dealflow.config import settings
from dealflow.engine import stages
from dealflow.engine.collaborators import WriteError
from dealflow.engine.models import Opportunity

logger = logging.getLogger(__name__)

# Canonical terminal stage → GHL opportunity status
STATUS_FOR_STAGE: dict[str, str] = {
    stages.WON: "won",
    stages.LOST: "lost",
}


PAGE_SIZE = 100


def _status_for(stage: str) -> str:
    return STATUS_FOR_STAGE.get(stage, "open")


def _notes_body(fields: dict[str, Any]) -> Optional[str]:
    reason = fields.get("lost_reason")
    notes = fields.get("lost_notes")
    if not reason and not notes:
        return None
    parts = []
    if reason:
        parts.append(f"Lost reason: {reason}")
    if notes:
        parts.append(str(notes))
    return "\n".join(parts)


class GHLOpportunityClient:
    def __init__(
        self,
        *,
        access_token: str,
        location_id: str,
        pipeline_id: str,
        stage_ids: dict[str, str],
        base_url: str = "https://services.leadconnectorhq.com",
        api_version: str = "2021-07-28",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.access_token = access_token
        self.location_id = location_id
        self.pipeline_id = pipeline_id
        self.stage_ids = dict(stage_ids)
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport
        self._canonical_by_ghl = {v: k for k, v in self.stage_ids.items()}

    @classmethod
    def from_settings(cls) -> "GHLOpportunityClient":
        if not settings.ghl_access_token:
            raise RuntimeError("GHL_ACCESS_TOKEN must be set for the ghl write backend")
        return cls(
            access_token=settings.ghl_access_token,
            location_id=settings.ghl_location_id,
            pipeline_id=settings.ghl_pipeline_id,
            stage_ids=settings.ghl_stage_ids,
            base_url=settings.ghl_base_url,
            api_version=settings.ghl_api_version,
            timeout=settings.http_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Version": self.api_version,
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(method, url, json=json_body, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(json.dumps({"event": "ghl_request_failed", "action": action, "error": str(e)}))
            raise WriteError(f"GHL {action} failed: {e}") from e

        logger.info(json.dumps({
            "event": "ghl_response",
            "action": action,
            "status": resp.status_code,
        }))

        if resp.status_code == 401:
            raise WriteError(f"GHL {action} unauthorized: check token and opportunities scopes")
        if resp.status_code not in (200, 201):
            raise WriteError(f"GHL {action} failed: {resp.status_code} {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _stage_id(self, stage: str) -> Optional[str]:
        return self.stage_ids.get(stage)

    def _canonical_stage(self, item: dict[str, Any]) -> str:
        status = item.get("status")
        if status == "won":
            return stages.WON
        if status in ("lost", "abandoned"):
            return stages.LOST
        return self._canonical_by_ghl.get(item.get("pipelineStageId") or "", stages.NEW_LEAD)

    def _to_opportunity(self, item: dict[str, Any], company_id: str) -> Opportunity:
        contact = item.get("contact") if isinstance(item.get("contact"), dict) else {}
        stage = self._canonical_stage(item)
        value = item.get("monetaryValue")
        record = {
            "id": item.get("id"),
            "company_id": company_id,
            "title": item.get("name") or "",
            "stage": stage,
            "contact_name": contact.get("name"),
            "contact_email": contact.get("email"),
            "contact_phone": contact.get("phone"),
            "estimated_value": value if stages.is_active(stage) else None,
            "actual_value": value if stage == stages.WON else None,
            "win_probability": stages.win_probability(stage),
            "stage_entered_at": item.get("lastStageChangeAt") or item.get("createdAt"),
            "last_activity_at": item.get("lastStatusChangeAt"),
            "created_at": item.get("createdAt"),
            "updated_at": item.get("updatedAt"),
        }
        return Opportunity.from_record(record)

    # ------------------------------------------------------------------
    # Writer commands
    # ------------------------------------------------------------------

    async def fetch_opportunities(self, company_id: str) -> list[Opportunity]:
        """Every opportunity in the pipeline, following the search cursor page by page."""
        out: list[Opportunity] = []
        seen_cursors: set[tuple[str, str]] = set()
        params: dict[str, Any] = {
            "location_id": self.location_id,
            "pipeline_id": self.pipeline_id,
            "limit": PAGE_SIZE,
        }

        while True:
            data = await self._request("GET", "/opportunities/search", action="fetch_opportunities", params=params)
            items = data.get("opportunities")
            if not isinstance(items, list) or not items:
                break
            out.extend(self._to_opportunity(i, company_id) for i in items if isinstance(i, dict) and i.get("id"))

            meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
            start_after_id = meta.get("startAfterId")
            if not start_after_id:
                break
            cursor = (str(start_after_id), str(meta.get("startAfter") or ""))
            if cursor in seen_cursors:
                # Server handed back a cursor we already followed
                logger.warning(json.dumps({"event": "ghl_cursor_repeated", "start_after_id": cursor[0]}))
                break
            seen_cursors.add(cursor)

            params = dict(params, startAfterId=cursor[0])
            if cursor[1]:
                params["startAfter"] = cursor[1]

        return out

    async def move_stage(self, opportunity_id: str, stage: str, actor_id: Optional[str]) -> None:
        if not stages.is_stage(stage):
            raise WriteError(f"Unknown stage: {stage}")
        body: dict[str, Any] = {"pipelineId": self.pipeline_id, "status": _status_for(stage)}
        stage_id = self._stage_id(stage)
        if stage_id:
            body["pipelineStageId"] = stage_id
        elif stages.is_active(stage):
            raise WriteError(f"No GHL pipeline stage mapped for {stage}")
        await self._request("PUT", f"/opportunities/{opportunity_id}", action="move_stage", json_body=body)

    async def update_fields(self, opportunity_id: str, fields: dict[str, Any]) -> None:
        body: dict[str, Any] = {}
        if "title" in fields:
            body["name"] = fields["title"]
        value = fields.get("actual_value", fields.get("estimated_value"))
        if value is not None:
            body["monetaryValue"] = value
        if body:
            await self._request("PUT", f"/opportunities/{opportunity_id}", action="update_fields", json_body=body)

        note = _notes_body(fields)
        if note:
            data = await self._request("GET", f"/opportunities/{opportunity_id}", action="load_opportunity")
            opportunity = data.get("opportunity") if isinstance(data.get("opportunity"), dict) else {}
            contact_id = opportunity.get("contactId")
            if not contact_id:
                raise WriteError(f"GHL opportunity {opportunity_id} has no contact for notes")
            await self._request("POST", f"/contacts/{contact_id}/notes", action="add_note", json_body={"body": note})

    async def create_opportunity(self, payload: dict[str, Any]) -> str:
        contact = await self._request(
            "POST",
            "/contacts/upsert",
            action="upsert_contact",
            json_body={"locationId": self.location_id, "name": payload.get("contact_name")},
        )
        contact_id = (contact.get("contact") or {}).get("id") if isinstance(contact.get("contact"), dict) else None
        if not contact_id:
            raise WriteError("GHL upsert_contact returned no contact id")

        stage = payload.get("stage") or stages.NEW_LEAD
        body: dict[str, Any] = {
            "pipelineId": self.pipeline_id,
            "locationId": self.location_id,
            "name": payload["title"],
            "status": "open",
            "contactId": contact_id,
        }
        stage_id = self._stage_id(stage)
        if stage_id:
            body["pipelineStageId"] = stage_id
        if payload.get("estimated_value") is not None:
            body["monetaryValue"] = payload["estimated_value"]
        if payload.get("source"):
            body["source"] = payload["source"]

        data = await self._request("POST", "/opportunities/", action="create_opportunity", json_body=body)
        opportunity = data.get("opportunity") if isinstance(data.get("opportunity"), dict) else data
        new_id = opportunity.get("id")
        if not new_id:
            raise WriteError("GHL create_opportunity returned no id")
        return str(new_id)
