from __future__ import annotations

from dataclasses import dataclass

DEFAULT_CATEGORY_ID = 1


@dataclass(frozen=True, slots=True)
class CategoryRule:
    id: int
    name: str
    slug: str
    description: str
    keywords: tuple[str, ...]


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        id=1,
        name="Programming & Development",
        slug="programming-development",
        description="Software development, web development, mobile apps, and coding roles",
        keywords=(
            "developer", "engineer", "programmer", "software", "frontend", "backend",
            "full stack", "fullstack", "web developer", "mobile developer", "react",
            "angular", "vue", "node", "python", "java", "javascript", "typescript",
            "php", "ruby", "golang", "rust", "kotlin", "swift", "flutter", "ios",
            "android", "coding", "dev", "programming",
        ),
    ),
    CategoryRule(
        id=2,
        name="Project Management",
        slug="project-management",
        description="Project managers, scrum masters, and agile delivery roles",
        keywords=(
            "project manager", "scrum master", "agile", "program manager", "delivery manager",
            "pmo", "kanban", "project coordinator", "technical project manager", "tpm",
            "technical program manager",
        ),
    ),
    CategoryRule(
        id=9,
        name="Product Management",
        slug="product-management",
        description="Product managers, product owners, and product leadership roles",
        keywords=(
            "product manager", "product owner", "product lead", "head of product",
            "vp of product", "director of product", "associate product manager", "apm",
            "group product manager", "gpm", "pm",
        ),
    ),
    CategoryRule(
        id=3,
        name="Design",
        slug="design",
        description="UI/UX design, graphic design, product design, and creative roles",
        keywords=(
            "designer", "ui", "ux", "ui/ux", "graphic design", "web design", "product design",
            "visual design", "interaction design", "figma", "sketch", "adobe", "illustrator",
            "photoshop", "creative",
        ),
    ),
    CategoryRule(
        id=4,
        name="Marketing",
        slug="marketing",
        description="Digital marketing, content marketing, SEO, and growth roles",
        keywords=(
            "marketing", "content", "seo", "sem", "social media", "digital marketing", "growth",
            "brand", "copywriter", "content writer", "marketing manager", "social media manager",
            "email marketing", "demand generation",
        ),
    ),
    CategoryRule(
        id=5,
        name="Data Science & Analytics",
        slug="data-science-analytics",
        description="Data scientists, analysts, machine learning engineers, and BI roles",
        keywords=(
            "data scientist", "data analyst", "machine learning", "ml", "ai",
            "artificial intelligence", "data engineer", "analytics", "business intelligence",
            "bi", "tableau", "power bi", "sql", "data", "statistics", "analyst",
        ),
    ),
    CategoryRule(
        id=6,
        name="DevOps & Infrastructure",
        slug="devops-infrastructure",
        description="DevOps engineers, SRE, cloud architects, and infrastructure roles",
        keywords=(
            "devops", "sre", "site reliability", "infrastructure", "cloud", "aws", "azure",
            "gcp", "kubernetes", "docker", "terraform", "ci/cd", "jenkins", "automation",
            "system administrator", "sysadmin",
        ),
    ),
    CategoryRule(
        id=7,
        name="Customer Support",
        slug="customer-support",
        description="Customer service, technical support, and success roles",
        keywords=(
            "customer support", "customer service", "technical support", "help desk",
            "customer success", "support engineer", "support specialist", "client success",
        ),
    ),
    CategoryRule(
        id=8,
        name="Sales",
        slug="sales",
        description="Sales representatives, account executives, and business development",
        keywords=(
            "sales", "account executive", "bdr", "sdr", "business development",
            "sales representative", "account manager", "sales manager", "inside sales",
        ),
    ),
)

TITLE_WEIGHT = 5
TAG_WEIGHT = 3
DESCRIPTION_WEIGHT = 1


def default_categories() -> list[dict[str, object]]:
    return [
        {"id": rule.id, "name": rule.name, "slug": rule.slug, "description": rule.description}
        for rule in sorted(CATEGORY_RULES, key=lambda rule: rule.id)
    ]


def determine_category_id(title: str | None, description: str | None, tags: list[str] | None = None) -> int:
    """Pick the best keyword-scored category; ties keep rule order."""
    title_lower = (title or "").lower()
    description_lower = (description or "").lower()
    tags_lower = [tag.lower() for tag in tags or []]

    best_id = DEFAULT_CATEGORY_ID
    best_score = 0
    for rule in CATEGORY_RULES:
        score = 0
        for keyword in rule.keywords:
            if keyword in title_lower:
                score += TITLE_WEIGHT
            if any(keyword in tag for tag in tags_lower):
                score += TAG_WEIGHT
            if keyword in description_lower:
                score += DESCRIPTION_WEIGHT
        if score > best_score:
            best_id = rule.id
            best_score = score
    return best_id
