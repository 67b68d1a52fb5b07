from .config import RouteRule, settings

# Basic prefix matching, first rule wins

def find_route(path: str) -> tuple[RouteRule | None, str | None]:
    for rule in settings.routes:
        if rule.matches(path):
            return rule, rule.rewrite(path)
    return None, None


def build_upstream_url(rule: RouteRule, upstream_path: str, query: str = "") -> str:
    # never let the rewritten path run into the target's authority
    if not upstream_path.startswith("/"):
        upstream_path = "/" + upstream_path
    url = rule.target_origin + upstream_path
    if query:
        url += "?" + query
    return url
