from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from maestro.classifier import risk_rank
from maestro.stack import StackProfile

Phase = Literal["design", "implementation", "quality", "git"]
AgentCategory = Literal["core", "specialist"]

PHASE_ORDER: tuple[str, ...] = ("design", "implementation", "quality", "git")

PHASE_TEMPLATES: dict[str, tuple[str, str]] = {
    "design": (
        "Analyze '{task}' and design the approach ({focus}).",
        "Design notes: affected files, interfaces, risks and alternatives.",
    ),
    "implementation": (
        "Implement '{task}' ({focus}).",
        "Code changes applied to the workspace following project conventions.",
    ),
    "quality": (
        "Verify '{task}' ({focus}).",
        "Findings labelled BLOCKER/MAJOR/MINOR/SUGGESTION and a pass/fail verdict.",
    ),
    "git": (
        "Prepare '{task}' for integration ({focus}).",
        "Atomic commits with messages ready for approval.",
    ),
}


@dataclass(frozen=True, slots=True)
class AgentDescriptor:
    id: str
    title: str
    category: AgentCategory
    group: str
    phase: Phase
    priority: int
    focus: str = ""
    # (profile field, accepted values); an empty value set accepts any detected value
    activates_on: tuple[tuple[str, frozenset[str]], ...] = ()
    task_types: frozenset[str] = field(default_factory=frozenset)
    min_risk: str | None = None

    def serves(self, task_type: str) -> bool:
        return not self.task_types or task_type in self.task_types

    def forced_by_risk(self, risk_level: str) -> bool:
        return self.min_risk is not None and risk_rank(risk_level) >= risk_rank(self.min_risk)

    def matching_fields(self, profile: StackProfile) -> list[str]:
        matched: list[str] = []
        for field_name, values in self.activates_on:
            value = getattr(profile, field_name, None)
            if value and (not values or value in values):
                matched.append(field_name)
        return matched

    def applies_to(self, profile: StackProfile) -> bool:
        return bool(self.matching_fields(profile))

    @property
    def opt_in(self) -> bool:
        return self.category == "specialist" and not self.activates_on

    def sort_key(self) -> tuple[int, int, str]:
        return (PHASE_ORDER.index(self.phase), self.priority, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "group": self.group,
            "phase": self.phase,
            "priority": self.priority,
        }


def _core(
    agent_id: str,
    title: str,
    phase: Phase,
    priority: int,
    focus: str,
    task_types: Iterable[str] = (),
    min_risk: str | None = None,
) -> AgentDescriptor:
    return AgentDescriptor(
        id=agent_id,
        title=title,
        category="core",
        group="core",
        phase=phase,
        priority=priority,
        focus=focus,
        task_types=frozenset(task_types),
        min_risk=min_risk,
    )


def _specialist(
    agent_id: str,
    title: str,
    group: str,
    phase: Phase,
    priority: int,
    focus: str,
    **activations: Iterable[str],
) -> AgentDescriptor:
    return AgentDescriptor(
        id=agent_id,
        title=title,
        category="specialist",
        group=group,
        phase=phase,
        priority=priority,
        focus=focus,
        activates_on=tuple(
            (field_name, frozenset(values)) for field_name, values in activations.items()
        ),
    )


CORE_AGENTS: tuple[AgentDescriptor, ...] = (
    _core("project-analyzer", "Project Analyzer", "design", 10, "codebase and impact analysis"),
    _core(
        "architecture-advisor",
        "Architecture Advisor",
        "design",
        20,
        "interfaces and architectural fit",
        task_types=("new_feature", "refactor", "performance"),
    ),
    _core(
        "dependency-manager",
        "Dependency Manager",
        "implementation",
        10,
        "dependency additions and upgrades",
        task_types=("new_feature", "security"),
    ),
    _core(
        "refactoring-specialist",
        "Refactoring Specialist",
        "implementation",
        20,
        "behaviour-preserving restructuring",
        task_types=("refactor",),
    ),
    _core(
        "documentation-engineer",
        "Documentation Engineer",
        "implementation",
        90,
        "documentation and changelog",
        task_types=("documentation", "new_feature"),
    ),
    _core(
        "performance-optimizer",
        "Performance Optimizer",
        "quality",
        10,
        "profiling and performance budgets",
        task_types=("performance",),
    ),
    _core(
        "test-strategist",
        "Test Strategist",
        "quality",
        20,
        "happy path, edge case and failure tests",
        task_types=("new_feature", "bug_fix", "refactor", "performance", "security", "testing"),
    ),
    _core(
        "security-auditor",
        "Security Auditor",
        "quality",
        30,
        "security review",
        task_types=("security",),
        min_risk="high",
    ),
    _core("code-reviewer", "Code Reviewer", "quality", 40, "correctness and maintainability"),
    _core("git-workflow-specialist", "Git Workflow Specialist", "git", 10, "commits and branches"),
)

FRONTEND_GROUP = "frontend"
BACKEND_GROUP = "backend"
LANGUAGE_GROUP = "languages"
DATABASE_GROUP = "databases"
INFRA_GROUP = "infrastructure"
TESTING_GROUP = "testing"
SPECIALIZED_GROUP = "specialized"

SPECIALIST_AGENTS: tuple[AgentDescriptor, ...] = (
    # databases & ORMs: schema work first
    _specialist("postgres-expert", "PostgreSQL Expert", DATABASE_GROUP, "implementation", 5,
                "PostgreSQL schema and queries", database=("PostgreSQL",)),
    _specialist("mysql-specialist", "MySQL Specialist", DATABASE_GROUP, "implementation", 5,
                "MySQL schema and queries", database=("MySQL",)),
    _specialist("mongodb-expert", "MongoDB Expert", DATABASE_GROUP, "implementation", 5,
                "document modelling", database=("MongoDB",), orm=("Mongoose",)),
    _specialist("redis-specialist", "Redis Specialist", DATABASE_GROUP, "implementation", 6,
                "caching and data structures", database=("Redis",)),
    _specialist("prisma-specialist", "Prisma Specialist", DATABASE_GROUP, "implementation", 6,
                "Prisma schema and migrations", orm=("Prisma",)),
    _specialist("typeorm-expert", "TypeORM Expert", DATABASE_GROUP, "implementation", 6,
                "TypeORM entities", orm=("TypeORM",)),
    _specialist("drizzle-specialist", "Drizzle Specialist", DATABASE_GROUP, "implementation", 6,
                "Drizzle schema", orm=("Drizzle",)),
    _specialist("sequelize-expert", "Sequelize Expert", DATABASE_GROUP, "implementation", 6,
                "Sequelize models", orm=("Sequelize",)),
    # backend
    _specialist("nest-specialist", "NestJS Specialist", BACKEND_GROUP, "implementation", 10,
                "NestJS modules and providers", backend_framework=("NestJS",)),
    _specialist("express-specialist", "Express Specialist", BACKEND_GROUP, "implementation", 10,
                "Express routing and middleware", backend_framework=("Express",)),
    _specialist("fastify-expert", "Fastify Expert", BACKEND_GROUP, "implementation", 10,
                "Fastify plugins and schemas", backend_framework=("Fastify",)),
    _specialist("koa-expert", "Koa Expert", BACKEND_GROUP, "implementation", 10,
                "Koa middleware", backend_framework=("Koa",)),
    _specialist("fastapi-specialist", "FastAPI Specialist", BACKEND_GROUP, "implementation", 10,
                "FastAPI routers and dependencies", backend_framework=("FastAPI",)),
    # frontend / full-stack
    _specialist("nextjs-specialist", "Next.js Specialist", FRONTEND_GROUP, "implementation", 20,
                "Next.js routing and rendering", frontend_framework=("Next.js",)),
    _specialist("nuxt-specialist", "Nuxt Specialist", FRONTEND_GROUP, "implementation", 20,
                "Nuxt modules and rendering", frontend_framework=("Nuxt",)),
    _specialist("remix-specialist", "Remix Specialist", FRONTEND_GROUP, "implementation", 20,
                "Remix loaders and actions", frontend_framework=("Remix",)),
    _specialist("astro-specialist", "Astro Specialist", FRONTEND_GROUP, "implementation", 20,
                "Astro islands", frontend_framework=("Astro",)),
    _specialist("sveltekit-specialist", "SvelteKit Specialist", FRONTEND_GROUP,
                "implementation", 20, "SvelteKit routing", frontend_framework=("SvelteKit",)),
    _specialist("angular-specialist", "Angular Specialist", FRONTEND_GROUP, "implementation", 21,
                "Angular components and services", frontend_framework=("Angular",)),
    _specialist("react-specialist", "React Specialist", FRONTEND_GROUP, "implementation", 21,
                "React components and hooks",
                frontend_framework=("React", "Next.js", "Remix", "Gatsby"),
                state_management=("Redux Toolkit", "Redux", "Zustand", "MobX", "Jotai", "Recoil")),
    _specialist("vue-specialist", "Vue Specialist", FRONTEND_GROUP, "implementation", 21,
                "Vue components and composables",
                frontend_framework=("Vue", "Nuxt"), state_management=("Pinia", "Vuex")),
    _specialist("svelte-specialist", "Svelte Specialist", FRONTEND_GROUP, "implementation", 21,
                "Svelte components", frontend_framework=("Svelte", "SvelteKit")),
    _specialist("tailwind-expert", "Tailwind Expert", FRONTEND_GROUP, "implementation", 25,
                "utility-first styling", styling=("Tailwind CSS",)),
    _specialist("css-architect", "CSS Architect", FRONTEND_GROUP, "implementation", 25,
                "style architecture", styling=("Sass", "styled-components", "Emotion")),
    # languages
    _specialist("typescript-pro", "TypeScript Pro", LANGUAGE_GROUP, "implementation", 30,
                "types and strictness", language=("TypeScript",)),
    _specialist("javascript-modernizer", "JavaScript Modernizer", LANGUAGE_GROUP,
                "implementation", 30, "modern JavaScript", language=("JavaScript",)),
    _specialist("python-specialist", "Python Specialist", LANGUAGE_GROUP, "implementation", 30,
                "idiomatic Python", language=("Python",),
                backend_framework=("Django", "FastAPI", "Flask")),
    _specialist("go-specialist", "Go Specialist", LANGUAGE_GROUP, "implementation", 30,
                "idiomatic Go", language=("Go",)),
    _specialist("rust-expert", "Rust Expert", LANGUAGE_GROUP, "implementation", 30,
                "ownership and error handling", language=("Rust",)),
    _specialist("java-specialist", "Java Specialist", LANGUAGE_GROUP, "implementation", 30,
                "JVM conventions", language=("Java", "Kotlin")),
    _specialist("csharp-specialist", "C# Specialist", LANGUAGE_GROUP, "implementation", 30,
                ".NET conventions", language=("C#",)),
    _specialist("php-modernizer", "PHP Modernizer", LANGUAGE_GROUP, "implementation", 30,
                "modern PHP", language=("PHP",)),
    # infrastructure & devops
    _specialist("docker-specialist", "Docker Specialist", INFRA_GROUP, "implementation", 40,
                "images and compose services", container=()),
    _specialist("kubernetes-expert", "Kubernetes Expert", INFRA_GROUP, "implementation", 41,
                "manifests and rollout", orchestration=("Kubernetes",)),
    _specialist("terraform-iac-specialist", "Terraform IaC Specialist", INFRA_GROUP,
                "implementation", 42, "infrastructure as code", iac=("Terraform",)),
    _specialist("aws-cloud-specialist", "AWS Cloud Specialist", INFRA_GROUP, "implementation", 43,
                "AWS services and IAM", hosting=("AWS",), iac=("AWS CDK",)),
    _specialist("nginx-load-balancer-specialist", "Nginx Load Balancer Specialist", INFRA_GROUP,
                "implementation", 44, "proxying and load balancing", web_server=("Nginx",)),
    _specialist("cicd-automation-specialist", "CI/CD Automation Specialist", INFRA_GROUP, "git",
                20, "pipeline configuration", ci=()),
    _specialist("vercel-deployment-specialist", "Vercel Deployment Specialist", INFRA_GROUP,
                "git", 30, "preview and production deploys", hosting=("Vercel",)),
    _specialist("cloudflare-edge-specialist", "Cloudflare Edge Specialist", INFRA_GROUP, "git",
                30, "edge deployment", hosting=("Cloudflare",)),
    # testing
    _specialist("vitest-specialist", "Vitest Specialist", TESTING_GROUP, "quality", 25,
                "Vitest suites", test_framework=("Vitest",)),
    _specialist("jest-testing-specialist", "Jest Testing Specialist", TESTING_GROUP, "quality",
                25, "Jest suites", test_framework=("Jest",)),
    _specialist("playwright-e2e-specialist", "Playwright E2E Specialist", TESTING_GROUP,
                "quality", 26, "end-to-end flows", e2e_framework=("Playwright",)),
    _specialist("cypress-specialist", "Cypress Specialist", TESTING_GROUP, "quality", 26,
                "end-to-end flows", e2e_framework=("Cypress",)),
    # opt-in: no stack signal activates these; the RULEBOOK does
    _specialist("animation-specialist", "Animation Specialist", FRONTEND_GROUP, "implementation",
                26, "motion and transitions"),
    _specialist("rest-api-architect", "REST API Architect", BACKEND_GROUP, "implementation", 11,
                "resource design and versioning"),
    _specialist("graphql-specialist", "GraphQL Specialist", BACKEND_GROUP, "implementation", 11,
                "schema and resolvers"),
    _specialist("websocket-expert", "WebSocket Expert", BACKEND_GROUP, "implementation", 12,
                "realtime channels"),
    _specialist("microservices-architect", "Microservices Architect", BACKEND_GROUP,
                "implementation", 12, "service boundaries and messaging"),
    _specialist("solidstart-specialist", "SolidStart Specialist", FRONTEND_GROUP,
                "implementation", 20, "SolidStart routing"),
    _specialist("monitoring-observability-specialist", "Monitoring & Observability Specialist",
                INFRA_GROUP, "implementation", 45, "metrics, logs and alerts"),
    _specialist("testing-library-specialist", "Testing Library Specialist", TESTING_GROUP,
                "quality", 25, "user-centric component tests"),
    _specialist("storybook-testing-specialist", "Storybook Testing Specialist", TESTING_GROUP,
                "quality", 27, "stories and visual tests"),
    _specialist("react-native-mobile-specialist", "React Native Mobile Specialist",
                SPECIALIZED_GROUP, "implementation", 50, "mobile apps"),
    _specialist("electron-desktop-specialist", "Electron Desktop Specialist", SPECIALIZED_GROUP,
                "implementation", 50, "desktop apps"),
    _specialist("cli-tools-specialist", "CLI Tools Specialist", SPECIALIZED_GROUP,
                "implementation", 50, "command-line tools"),
    _specialist("browser-extension-specialist", "Browser Extension Specialist",
                SPECIALIZED_GROUP, "implementation", 50, "browser extensions"),
    _specialist("ai-ml-integration-specialist", "AI/ML Integration Specialist",
                SPECIALIZED_GROUP, "implementation", 50, "model integration"),
    _specialist("blockchain-web3-specialist", "Blockchain & Web3 Specialist", SPECIALIZED_GROUP,
                "implementation", 50, "smart contracts and wallets"),
    _specialist("game-development-specialist", "Game Development Specialist",
                SPECIALIZED_GROUP, "implementation", 50, "game loops and rendering"),
    _specialist("data-pipeline-specialist", "Data Pipeline Specialist", SPECIALIZED_GROUP,
                "implementation", 50, "ETL and batch jobs"),
)


class AgentCatalog:
    def __init__(self, descriptors: Iterable[AgentDescriptor]) -> None:
        self._descriptors: dict[str, AgentDescriptor] = {}
        known_fields = set(StackProfile.categories())
        for descriptor in descriptors:
            if descriptor.id in self._descriptors:
                raise ValueError(f"Duplicate agent id in catalog: {descriptor.id}")
            if descriptor.phase not in PHASE_ORDER:
                raise ValueError(f"Unknown phase for {descriptor.id}: {descriptor.phase}")
            unknown = [name for name, _ in descriptor.activates_on if name not in known_fields]
            if unknown:
                raise ValueError(
                    f"Agent {descriptor.id} activates on unknown fields: {', '.join(unknown)}"
                )
            self._descriptors[descriptor.id] = descriptor

    @classmethod
    def default(cls) -> AgentCatalog:
        return cls([*CORE_AGENTS, *SPECIALIST_AGENTS])

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def get(self, agent_id: str) -> AgentDescriptor:
        try:
            return self._descriptors[agent_id]
        except KeyError as exc:
            raise KeyError(f"Unknown agent: {agent_id}") from exc

    def all(self) -> list[AgentDescriptor]:
        return sorted(self._descriptors.values(), key=AgentDescriptor.sort_key)

    def core(self) -> list[AgentDescriptor]:
        return [item for item in self.all() if item.category == "core"]

    def specialists(self) -> list[AgentDescriptor]:
        return [item for item in self.all() if item.category == "specialist"]

    def groups(self) -> dict[str, list[AgentDescriptor]]:
        grouped: dict[str, list[AgentDescriptor]] = {}
        for descriptor in self.all():
            grouped.setdefault(descriptor.group, []).append(descriptor)
        return grouped

    def matching_specialists(self, profile: StackProfile) -> list[AgentDescriptor]:
        return [item for item in self.specialists() if item.applies_to(profile)]

    def opt_in(self) -> list[AgentDescriptor]:
        return [item for item in self.specialists() if item.opt_in]
