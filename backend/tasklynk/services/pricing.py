"""
Order pricing: service catalog, urgency surcharge, payout split and the
freelancer's share of the working window.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from tasklynk.errors import ValidationFailed

URGENCY_WINDOW = timedelta(hours=8)
URGENCY_MULTIPLIER = 1.30
FREELANCER_SHARE = 0.70
ADMIN_SHARE = 0.30
FREELANCER_TIME_SHARE = 0.60


@dataclass(frozen=True)
class Service:
    key: str
    name: str
    rate: float
    unit: str
    unit_type: str
    category: str = "writing"

    @property
    def work_type(self) -> str:
        return self.name


def _svc(key, name, rate, unit_type, category="writing", unit=None):
    return Service(key, name, rate, unit or f"per {unit_type}", unit_type, category)


SERVICE_CATALOG: dict[str, Service] = {s.key: s for s in [
    # Writing
    _svc("essay", "Essay", 250, "page"),
    _svc("assignment", "Assignment", 250, "page"),
    _svc("research-proposal", "Research Proposal", 300, "page"),
    _svc("thesis-writing", "Thesis Writing", 300, "page"),
    _svc("research-paper", "Research Paper", 250, "page"),
    _svc("dissertation", "Dissertation", 300, "page"),
    _svc("case-study", "Case Study", 250, "page"),
    _svc("lab-report", "Lab Report", 250, "page"),
    _svc("article-writing", "Article Writing", 200, "page"),
    _svc("blog-writing", "Blog Writing", 200, "page"),
    # Presentations
    _svc("presentation", "Presentation", 150, "slide", "presentation"),
    _svc("powerpoint-design", "PowerPoint Design", 150, "slide", "presentation"),
    _svc("slide-design", "Slide Design", 150, "slide", "presentation"),
    # Editing (never surcharged)
    _svc("grammar-proofreading", "Grammar & Proofreading", 30, "page", "editing"),
    _svc("ai-content-removal", "AI Content Removal", 50, "page", "editing"),
    _svc("humanization", "Humanization", 50, "page", "editing"),
    _svc("plagiarism-ai-detection", "Plagiarism + AI Detection Report", 30, "document", "editing"),
    _svc("formatting-referencing", "Formatting & Referencing", 25, "page", "editing"),
    # Documents
    _svc("pdf-editing", "PDF Editing", 50, "page", "documents"),
    _svc("document-conversion", "Document Conversion", 10, "file", "documents"),
    _svc("file-compression", "File Compression", 20, "file", "documents"),
    # Data analysis
    _svc("data-analysis", "Data Analysis", 350, "dataset", "data"),
    _svc("spss", "SPSS", 350, "dataset", "data"),
    _svc("excel", "Excel", 350, "dataset", "data"),
    _svc("r-programming", "R Programming", 350, "dataset", "data"),
    _svc("python", "Python", 350, "dataset", "data"),
    _svc("stata", "STATA", 350, "dataset", "data"),
    _svc("jasp", "JASP", 350, "dataset", "data"),
    _svc("jamovi", "JAMOVI", 350, "dataset", "data"),
    # Design
    _svc("infographics", "Infographics", 150, "graphic", "design"),
    _svc("data-visualization", "Data Visualization", 150, "graphic", "design"),
    _svc("poster-design", "Poster Design", 200, "design", "design"),
    _svc("resume-design", "Resume Design", 200, "design", "design"),
    _svc("brochure-design", "Brochure Design", 200, "design", "design"),
    # Support
    _svc("revision-support", "Revision Support", 100, "revision", "support"),
    _svc("expert-consultation", "Expert Consultation", 500, "hour", "support"),
    _svc("tutoring", "Tutoring", 500, "hour", "support"),
    _svc("other", "Other", 150, "page", "other"),
]}


@dataclass(frozen=True)
class Quote:
    service: Service
    quantity: float
    base_amount: float
    urgency_multiplier: float
    amount: int


def get_service(service_type: str) -> Service:
    service = SERVICE_CATALOG.get(service_type)
    if service is None:
        raise ValidationFailed(f"Unknown service type: {service_type}", code="INVALID_SERVICE_TYPE")
    return service


def is_urgent(service: Service, deadline: datetime, now: datetime) -> bool:
    return deadline - now < URGENCY_WINDOW and service.category != "editing"


def quote(service_type: str, quantity: float, deadline: datetime, now: datetime) -> Quote:
    """Price an order. The urgency surcharge is folded into the amount, never itemised."""
    service = get_service(service_type)
    if quantity is None or quantity <= 0:
        raise ValidationFailed("Quantity must be greater than 0", code="INVALID_QUANTITY")

    base = service.rate * quantity
    multiplier = URGENCY_MULTIPLIER if is_urgent(service, deadline, now) else 1.0
    return Quote(
        service=service,
        quantity=quantity,
        base_amount=base,
        urgency_multiplier=multiplier,
        amount=round(base * multiplier),
    )


def compute_amount(service_type: str, quantity: float, deadline: datetime, now: datetime) -> int:
    return quote(service_type, quantity, deadline, now).amount


def resolve_amount(computed: int, custom: float | None) -> float:
    """Clients may pay more than the computed price, never less."""
    if custom is None:
        return float(computed)
    if custom <= 0:
        raise ValidationFailed("Amount must be greater than 0", code="INVALID_AMOUNT")
    if custom < computed:
        raise ValidationFailed(
            f"Amount cannot be less than the computed price: KSh {computed:.2f}",
            code="AMOUNT_BELOW_COMPUTED",
        )
    return float(custom)


def payout_share(amount: float) -> float:
    return round(amount * FREELANCER_SHARE, 2)


def admin_commission(amount: float) -> float:
    return round(amount * ADMIN_SHARE, 2)


def freelancer_deadline(start: datetime, deadline: datetime) -> datetime:
    """Freelancer gets the first 60% of the window; the rest is admin review buffer."""
    window = deadline - start
    return (start + window * FREELANCER_TIME_SHARE).replace(microsecond=0)
