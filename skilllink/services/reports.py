import csv
import io

from ..models.common import utcnow

FORMATS = ("csv", "text")


def _grade_rows(distribution):
    total = sum(distribution.values())
    for grade, count in distribution.items():
        yield grade, count, (count / total * 100 if total else 0)


def cohort_report_csv(data):
    out = io.StringIO()
    w = csv.writer(out, lineterminator="\n")
    w.writerow(["Cohort Analytics Report"])
    w.writerow(["Cohort", data["cohort"]["name"]])
    w.writerow(["Generated", utcnow().isoformat()])
    w.writerow([])

    w.writerow(["Grade Distribution"])
    w.writerow(["Grade", "Count", "Percentage"])
    for grade, count, pct in _grade_rows(data["gradeDistribution"]):
        w.writerow([grade, count, f"{pct:.2f}%"])
    w.writerow([])

    w.writerow(["Assignment Submission Rates"])
    w.writerow(["Assignment", "Total Students", "Submissions", "Rate"])
    for stat in data["submissionStats"]:
        w.writerow([stat["title"], stat["totalStudents"], stat["submissions"],
                    f"{stat['rate']:.2f}%"])
    w.writerow([])

    w.writerow(["Attendance Statistics"])
    w.writerow(["Status", "Count"])
    for stat in data["attendanceStats"]:
        w.writerow([stat["status"], stat["count"]])

    if data["atRiskStudents"]:
        w.writerow([])
        w.writerow(["At-Risk Students"])
        w.writerow(["Student ID", "Name", "Avg Grade", "Submission Rate", "Attendance Count"])
        for s in data["atRiskStudents"]:
            w.writerow([s["studentId"], s["student"]["name"], f"{s['avgGrade']:.2f}%",
                        f"{s['submissionRate']:.2f}%", s["attendanceCount"]])
    return out.getvalue()


def cohort_report_text(data):
    rule, thin = "=" * 60, "-" * 60
    lines = [rule, "COHORT ANALYTICS REPORT", rule, "",
             f"Cohort: {data['cohort']['name']}",
             f"Generated: {utcnow():%Y-%m-%d %H:%M} UTC", ""]

    lines += [thin, "GRADE DISTRIBUTION", thin]
    for grade, count, pct in _grade_rows(data["gradeDistribution"]):
        lines.append(f"Grade {grade}: {count} submissions ({pct:.1f}%)")
    lines.append("")

    lines += [thin, "ASSIGNMENT SUBMISSION RATES", thin]
    for stat in data["submissionStats"]:
        lines.append(stat["title"])
        lines.append(f"  Submissions: {stat['submissions']}/{stat['totalStudents']}"
                     f" ({stat['rate']:.1f}%)")
    lines.append("")

    lines += [thin, "ATTENDANCE STATISTICS", thin]
    lines += [f"{s['status']}: {s['count']}" for s in data["attendanceStats"]]
    lines.append("")

    at_risk = data["atRiskStudents"]
    if at_risk:
        lines += [thin, "AT-RISK STUDENTS", thin,
                  f"{len(at_risk)} students need attention", ""]
        for i, s in enumerate(at_risk, start=1):
            lines += [
                f"{i}. {s['student']['name']} (id {s['studentId']})",
                f"   Average Grade: {s['avgGrade']:.1f}%",
                f"   Submission Rate: {s['submissionRate']:.1f}%",
                f"   Attendance: {s['attendanceCount']} days",
                "",
            ]

    lines += [rule, "END OF REPORT", rule]
    return "\n".join(lines)


def render_cohort_report(data, fmt):
    """Returns (body, mimetype, file extension)."""
    if fmt == "csv":
        return cohort_report_csv(data), "text/csv", "csv"
    if fmt == "text":
        return cohort_report_text(data), "text/plain", "txt"
    raise ValueError(f"unsupported report format: {fmt}")
