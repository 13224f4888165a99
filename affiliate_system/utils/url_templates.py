# affiliate_system/utils/url_templates.py
"""
Affiliate redirect URL templating and product URL cleaning.

Pure functions, no I/O, never raise on bad input. A redirect template is
resolved in a single regex pass: every placeholder is looked up once and its
value is written to the output without being scanned again, so a crafted
ambassador ref or product url containing "{SUB_ID}" stays literal text.

Supported placeholders:
    {BASE_URL}       -> program.baseUrl
    {AFF_ID}         -> program.publisherID
    {AFFILIATE_TAG}  -> alias of {AFF_ID}
    {MID}            -> program.merchantID
    {SUB_ID}         -> sub id built from program.subIdFormat and the ref
    {PRODUCT_URL}    -> product url, raw when it starts the template, encoded otherwise
"""
import re
from typing import NamedTuple, Optional
from urllib.parse import quote, urlsplit, urlunsplit, parse_qsl, urlencode

PLACEHOLDER_PATTERN = re.compile(r"\{(BASE_URL|AFF_ID|AFFILIATE_TAG|MID|SUB_ID|PRODUCT_URL)\}")
PRODUCT_URL_TOKEN = "{PRODUCT_URL}"
REF_TOKEN = "{REF}"

# Same unreserved set as JavaScript's encodeURIComponent
URI_COMPONENT_SAFE = "-_.!~*'()"

AMAZON_ASIN_PATTERN = re.compile(r"/(dp|gp/product)/([A-Za-z0-9]{10})")
AMAZON_CANONICAL_HOST = "https://www.amazon.fr"

TRACKING_PARAMS = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "gclid",
    "fbclid",
    "ref",
    "tag",
})


class RedirectResolution(NamedTuple):
    url: str
    subIdSent: Optional[str]


def buildSubId(program, ambassadorRef: Optional[str]) -> Optional[str]:
    """Sub-id sent to the merchant, or None when the program does not take one."""
    if not program.subIdParam or not ambassadorRef:
        return None
    return (program.subIdFormat or REF_TOKEN).replace(REF_TOKEN, ambassadorRef)


def resolveRedirectUrl(program, ambassadorRef: Optional[str],
                       productUrl: Optional[str] = None) -> RedirectResolution:
    """
    Resolve program.redirectTemplate into an outbound url.

    Every occurrence of a placeholder is substituted, repeats included.
    Missing values resolve to empty strings. The output is not guaranteed to be
    a valid url; see isUsableRedirect.
    """
    template = program.redirectTemplate or ""
    subId = buildSubId(program, ambassadorRef)

    resolvedProductUrl = productUrl or program.baseUrl or ""
    if template.startswith(PRODUCT_URL_TOKEN):
        productValue = resolvedProductUrl
    else:
        productValue = quote(resolvedProductUrl, safe=URI_COMPONENT_SAFE)

    values = {
        "BASE_URL": program.baseUrl or "",
        "AFF_ID": program.publisherID or "",
        "AFFILIATE_TAG": program.publisherID or "",
        "MID": program.merchantID or "",
        "SUB_ID": subId or "",
        "PRODUCT_URL": productValue,
    }

    url = PLACEHOLDER_PATTERN.sub(lambda match: values[match.group(1)], template)
    return RedirectResolution(url=url, subIdSent=subId)


def isUsableRedirect(url: Optional[str]) -> bool:
    """True for absolute http(s) urls with a host."""
    if not url:
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def cleanProductUrl(url: str, network: str) -> str:
    """
    Best-effort normalization of a merchant product url.

    Amazon urls are reduced to /dp/ASIN or /gp/product/ASIN (the matched
    segment is kept as is). Other urls lose their tracking query params.
    Unparseable input is returned unchanged.
    """
    if network == "amazon":
        match = AMAZON_ASIN_PATTERN.search(url)
        if match:
            return f"{AMAZON_CANONICAL_HOST}/{match.group(1)}/{match.group(2)}"
        return url

    try:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return url

        params = parse_qsl(parts.query, keep_blank_values=True)
        kept = [(key, value) for key, value in params if key not in TRACKING_PARAMS]
        if len(kept) == len(params):
            return url

        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))
    except ValueError:
        return url
