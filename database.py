"""database.py
User profile persistence: name, assistant name/image/language and command history.

Profiles live in the Supabase 'profiles' table when credentials are configured.
Without credentials they are kept in process memory, seeded from settings.json,
so a single-machine install works out of the box.
"""
from __future__ import annotations

import threading
from typing import Any, Dict, Optional

import httpx
from supabase import create_client, Client
from config import SUPABASE_URL, SUPABASE_KEY, get_settings

supabase: Optional[Client] = None
if SUPABASE_URL and SUPABASE_KEY:
    try:
        # Strip whitespace and remove potential quotes from the credentials.
        url = SUPABASE_URL.strip().strip("'\"")
        key = SUPABASE_KEY.strip().strip("'\"")

        supabase = create_client(url, key)

        # The default httpx client can have issues with HTTP/2 on macOS,
        # so the postgrest session is swapped for an HTTP/1.1 one.
        if supabase.postgrest is not None and hasattr(supabase.postgrest, 'session'):
             original_session = supabase.postgrest.session
             supabase.postgrest.session = httpx.Client(
                 base_url=original_session.base_url,
                 headers=original_session.headers,
                 transport=httpx.HTTPTransport(http2=False),
             )

        print("Successfully connected to Supabase.")
    except Exception as e:
        print(f"Failed to connect to Supabase: {e}")
        supabase = None
else:
    print("Supabase credentials not found. Profiles will be kept in memory.")


_local_profiles: Dict[str, Dict[str, Any]] = {}
_local_lock = threading.Lock()


def _default_profile() -> Dict[str, Any]:
    settings = get_settings()
    return {
        "name": settings["user_name"],
        "assistantName": settings["assistant_name"],
        "assistantImage": settings.get("assistant_image"),
        "assistantLanguage": settings["assistant_language"],
        "history": [],
    }


def _from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": row.get("name"),
        "assistantName": row.get("assistant_name"),
        "assistantImage": row.get("assistant_image"),
        "assistantLanguage": row.get("assistant_language") or "en-US",
        "history": list(row.get("history") or []),
    }


def _fetch_row(user_id: str) -> Optional[Dict[str, Any]]:
    response = supabase.table("profiles").select("*").eq("id", user_id).limit(1).execute()
    return response.data[0] if response.data else None


def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    """Returns the profile for user_id, or None if it does not exist."""
    if supabase:
        try:
            row = _fetch_row(user_id)
        except Exception as e:
            print(f"Error reading profile from Supabase: {e}")
            return None
        return _from_row(row) if row else None

    with _local_lock:
        profile = _local_profiles.setdefault(user_id, _default_profile())
        return {**profile, "history": list(profile["history"])}


def update_assistant(user_id: str, assistant_name: Optional[str], assistant_image: Optional[str]) -> Optional[Dict[str, Any]]:
    """Sets the assistant name and image. Fields passed as None are left unchanged."""
    changes = {}
    if assistant_name:
        changes["assistantName"] = assistant_name
    if assistant_image:
        changes["assistantImage"] = assistant_image

    if supabase:
        columns = {"assistantName": "assistant_name", "assistantImage": "assistant_image"}
        try:
            if changes:
                supabase.table("profiles").update(
                    {columns[k]: v for k, v in changes.items()}
                ).eq("id", user_id).execute()
        except Exception as e:
            print(f"Error updating profile in Supabase: {e}")
            return None
        return get_user(user_id)

    with _local_lock:
        profile = _local_profiles.setdefault(user_id, _default_profile())
        profile.update(changes)
    return get_user(user_id)


def append_history(user_id: str, command: str) -> None:
    """Appends one command to the user's history."""
    if supabase:
        try:
            row = _fetch_row(user_id)
            if row is None:
                return
            history = list(row.get("history") or [])
            history.append(command)
            supabase.table("profiles").update({"history": history}).eq("id", user_id).execute()
        except Exception as e:
            print(f"Error appending history in Supabase: {e}")
        return

    with _local_lock:
        profile = _local_profiles.setdefault(user_id, _default_profile())
        profile["history"].append(command)
