"""MCP tools for the ChatGPT login session."""

from __future__ import annotations

import json

import httpx

from ..config import SESSION_MANAGER_URL


async def _call_session_manager(
    method: str,
    path: str,
    json_body: dict | None = None,
    timeout: float = 120.0,
) -> dict:
    """Make a request to the session manager HTTP service."""
    url = f"{SESSION_MANAGER_URL}{path}"
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            if method == "GET":
                resp = await client.get(url)
            else:
                resp = await client.post(url, json=json_body or {})

            if resp.status_code >= 400:
                data = resp.json()
                result = {"error": data.get("error", f"HTTP {resp.status_code}")}
                if "message" in data:
                    result["message"] = data["message"]
                if "reason" in data:
                    result["reason"] = data["reason"]
                return result
            return resp.json()

    except httpx.ConnectError:
        return {
            "error": "Session Manager is not reachable at "
            f"{SESSION_MANAGER_URL}. It should auto-start with the MCP server. "
            "If running standalone: python -m chatgpt_batch.session_manager"
        }
    except httpx.TimeoutException:
        return {"error": "Session Manager timed out. The browser may be loading."}
    except Exception as e:
        return {"error": f"Failed to connect to Session Manager: {e}"}


def _describe_error(result: dict) -> str:
    detail = result.get("message") or result.get("reason")
    return f"Error: {result['error']}" + (f" ({detail})" if detail else "")


async def check_login() -> str:
    """Check whether a saved ChatGPT session is available.

    Looks at the persistent browser profile and, when the files alone
    are not conclusive, opens ChatGPT headlessly to confirm.

    Returns:
        Login status message.
    """
    result = await _call_session_manager("GET", "/api/check-login")

    if result.get("isLoggedIn"):
        return f"Logged in to ChatGPT. ({result.get('reason', '')})"
    if result.get("error") == "LOGIN_REQUIRED":
        return (
            f"Not logged in: {result.get('reason', 'no saved session')}.\n\n"
            "Call login to open a browser window and sign in to ChatGPT."
        )
    return _describe_error(result)


async def login() -> str:
    """Open a visible browser window for a manual ChatGPT login.

    Returns immediately. The window closes by itself once a stable
    logged-in state is seen, or after ten minutes.

    Returns:
        What the user should do next.
    """
    result = await _call_session_manager("POST", "/api/login")

    if "error" in result:
        return _describe_error(result)

    if result.get("alreadyLoggedIn"):
        return f"Already logged in. {result.get('message', '')}"
    return (
        f"{result.get('message', 'Browser opened.')}\n\n"
        "Please log in to ChatGPT in the browser window. "
        "Tell me when you're done and I'll check the session."
    )


async def reset_session() -> str:
    """Close the browser and delete the saved ChatGPT session.

    Returns:
        Confirmation message.
    """
    result = await _call_session_manager("POST", "/api/reset-session")

    if "error" in result:
        return _describe_error(result)

    return result.get("message", "Session reset.")


async def session_status() -> str:
    """Report the state of the persistent scraping browser.

    Returns:
        JSON-formatted status.
    """
    result = await _call_session_manager("GET", "/api/status")

    if "error" in result:
        return _describe_error(result)

    return json.dumps(result, indent=2)
